import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_session_token(length: int = 32) -> str:
    return shortuuid.ShortUUID().random(length=length)
