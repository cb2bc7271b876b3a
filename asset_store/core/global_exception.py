from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from asset_store.core.exceptions import BaseBusinessException
from asset_store.core.logger import logger
from asset_store.core.response_codes import ResponseCodeEnum


async def business_exception_handler(request: Request, exc: BaseBusinessException):
    logger.warning(f"Business Exception | code: {exc.code}, message: {exc.message}, path: {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": exc.code,
            "message": exc.message,
            "data": None
        }
    )


async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled Exception | {repr(exc)} | path: {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "code": ResponseCodeEnum.SERVER_ERROR.code,
            "message": ResponseCodeEnum.SERVER_ERROR.message,
            "data": None
        }
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    把资产存储的异常分类映射为统一的 JSON 响应。
    宿主应用在挂载自己的路由之前调用一次即可。
    """
    app.add_exception_handler(BaseBusinessException, business_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
