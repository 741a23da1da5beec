# bcrypt password hashing. Hashing is CPU-bound (~250ms at 12 rounds), so the
# async wrappers push it onto the default executor to keep the loop free.

import asyncio

import bcrypt

# bcrypt ignores everything past 72 bytes; longer passwords are rejected upstream.
MAX_PASSWORD_BYTES = 72


def hash_password(plaintext: str, rounds: int = 12) -> bytes:
    return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=rounds))


def password_matches(plaintext: str, password_hash: bytes) -> bool:
    encoded = plaintext.encode("utf-8")
    # Nothing over the limit was ever hashed, so it can't match.
    if not password_hash or len(encoded) > MAX_PASSWORD_BYTES:
        return False
    return bcrypt.checkpw(encoded, password_hash)


async def hash_password_async(plaintext: str, rounds: int = 12) -> bytes:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, hash_password, plaintext, rounds)


async def password_matches_async(plaintext: str, password_hash: bytes) -> bool:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, password_matches, plaintext, password_hash)
