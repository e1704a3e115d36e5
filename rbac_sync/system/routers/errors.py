"""
服务层异常 → HTTP 响应
"""
from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from rbac_core.errors import ErrorKind, PermissionSyncError
from rbac_core.sync_report import SyncReport

STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_PERMISSION_SHAPE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_MENU_PARENT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.MENU_HAS_CHILDREN: status.HTTP_400_BAD_REQUEST,
    ErrorKind.DUPLICATE_CODE: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_API: status.HTTP_409_CONFLICT,
    ErrorKind.ROLE_IN_USE: status.HTTP_409_CONFLICT,
    ErrorKind.POLICY_STORE_FAILURE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.PERSISTENCE_FAILURE: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.CANCELLED: status.HTTP_408_REQUEST_TIMEOUT,
}


def http_error(e: PermissionSyncError) -> HTTPException:
    return HTTPException(
        status_code=STATUS_BY_KIND.get(e.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=e.to_dict(),
    )


def report_response(report: SyncReport, **extra) -> JSONResponse:
    """策略引擎部分失败时返回 207，客户端可执行全量同步修复"""
    content = report.to_dict()
    content.update(extra)
    code = status.HTTP_207_MULTI_STATUS if report.partial else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=content)
