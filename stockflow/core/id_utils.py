import shortuuid


def generate_id() -> str:
    return shortuuid.uuid()


def generate_reference(prefix: str, length: int = 10) -> str:
    token = shortuuid.ShortUUID(alphabet="23456789ABCDEFGHJKLMNPQRSTUVWXYZ").random(length=length)
    return f"{prefix.strip().upper()}-{token}"
