"""常量定义：集中管理 HTTP 状态码、卡片界面上限与权限名称。"""

from fastapi import status

HTTP_STATUS_OK = status.HTTP_200_OK
HTTP_STATUS_BAD_REQUEST = status.HTTP_400_BAD_REQUEST
HTTP_STATUS_UNAUTHORIZED = status.HTTP_401_UNAUTHORIZED
HTTP_STATUS_FORBIDDEN = status.HTTP_403_FORBIDDEN
HTTP_STATUS_NOT_FOUND = status.HTTP_404_NOT_FOUND
HTTP_STATUS_CONFLICT = status.HTTP_409_CONFLICT
HTTP_STATUS_PRECONDITION_FAILED = status.HTTP_412_PRECONDITION_FAILED
HTTP_STATUS_BAD_GATEWAY = status.HTTP_502_BAD_GATEWAY
HTTP_STATUS_SERVICE_UNAVAILABLE = status.HTTP_503_SERVICE_UNAVAILABLE

# 下拉选择框最多展示的选项数（聊天平台限制）
SELECT_MENU_LIMIT = 25

# 编辑表单的输入长度上限
FILE_NAME_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500
UPLOAD_PATH_MAX_LENGTH = 200

# 仅管理员可执行的命令所需能力（如设置根目录）
ADMIN_CAPABILITY = "Administrator"

# 后端自身的根目录标识：不做节点查询，直接视为合法文件夹
BACKEND_ROOT_SENTINEL = "root"

BRIDGE_TOKEN_HEADER = "X-Bridge-Token"
