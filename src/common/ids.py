import uuid


def generate_id() -> str:
    return str(uuid.uuid4())[:8]


def local_message_id() -> str:
    return f"local-{uuid.uuid4().hex[:12]}"
