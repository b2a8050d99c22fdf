import logging
from typing import List
from app.core.config import settings
from app.core.errors import ValidationFailed
from app.core.storage import Storage
from app.modules.auth.schemas import UserInDB
from app.modules.codes import schemas

logger = logging.getLogger(__name__)

async def generate_codes(storage: Storage, code_in: schemas.CodeGenerate, admin: UserInDB) -> List[schemas.GeneratedCode]:
    if code_in.count > settings.MAX_CODES_PER_REQUEST:
        raise ValidationFailed(f"At most {settings.MAX_CODES_PER_REQUEST} codes per request")
    codes = await storage.generate_redeem_codes(code_in.value, code_in.count)
    logger.info(f"Admin {admin.id} generated {len(codes)} code(s) worth {code_in.value}")
    return [schemas.GeneratedCode(id=c.id, code=c.code, value=c.value) for c in codes]

async def list_codes(storage: Storage) -> List[schemas.RedeemCodeRead]:
    return await storage.list_redeem_codes()

async def redeem(storage: Storage, user: UserInDB, redeem_in: schemas.CodeRedeem) -> schemas.RedeemResponse:
    try:
        code, user = await storage.redeem_code(redeem_in.code, user.id)
    except ValidationFailed:
        logger.info(f"User {user.id} presented an invalid or used code")
        raise
    logger.info(f"User {user.id} redeemed code {code.id} for {code.value} (balance {user.credits})")
    return schemas.RedeemResponse(message="Code redeemed", value=code.value, credits=user.credits)
