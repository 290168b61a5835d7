# -*- coding: utf-8 -*-
"""
User Registry API
提供用户注册 / 查询 / 事件监听接口
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..blockchain import USER_REGISTRY_ABI, ChainError, UserRegistry
from ..config import load_settings

logger = logging.getLogger(__name__)

# 全局合约实例（进程内只构建一次）
registry: Optional[UserRegistry] = None


class RegistryUnavailableError(Exception):
    """配置缺失或无效，无法构建合约实例"""

    def __init__(self, cause: Exception):
        self.cause = cause
        super().__init__(str(cause))


async def get_registry() -> UserRegistry:
    """
    获取合约实例（懒加载）

    在事件循环中执行；检查和赋值之间没有 await，并发的首次请求只会构建一个实例
    """
    global registry
    if registry is None:
        try:
            registry = UserRegistry.from_settings(load_settings())
        except (ValueError, ChainError) as e:
            logger.error("Registry init failed: %s", e)
            raise RegistryUnavailableError(e) from e
    return registry


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # 进程退出时停止监听并关闭节点连接
    global registry
    if registry is not None:
        await registry.close()
        registry = None


# 创建 FastAPI 应用
app = FastAPI(
    title="User Registry API",
    description="UserRegistry 合约网关",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ 请求/响应模型 ============

class AddUserRequest(BaseModel):
    """注册用户请求"""
    name: str
    age: int = Field(ge=0)
    email: str


class AddUserResponse(BaseModel):
    success: bool
    message: str
    transactionHash: str
    from_: str = Field(alias="from")


class UserNamesResponse(BaseModel):
    success: bool
    userNames: List[str]


class User(BaseModel):
    name: str
    age: int
    email: str


class UserResponse(BaseModel):
    success: bool
    user: User


class MessageResponse(BaseModel):
    success: bool
    message: str


def _failure(message: str, error: Exception, **extra) -> JSONResponse:
    """统一的失败响应（带原始错误信息和失败步骤）"""
    step = getattr(error, "step", None)
    content = {
        "success": False,
        "message": message,
        "error": error.message if isinstance(error, ChainError) else str(error),
        "step": getattr(step, "name", step),
    }
    # 交易已上链但执行失败时附上回执
    receipt = getattr(error, "receipt", None)
    if receipt is not None:
        content["receipt"] = receipt.to_dict()
    content.update(extra)
    return JSONResponse(status_code=500, content=content)


@app.exception_handler(RegistryUnavailableError)
async def registry_unavailable_handler(request: Request, exc: RegistryUnavailableError):
    return _failure("Gateway is not configured", exc.cause)


# ============ API 路由 ============

@app.get("/")
async def root():
    """健康检查"""
    return {
        "status": "ok",
        "service": "User Registry API",
        "version": "1.0.0"
    }


@app.get("/api/status")
async def get_status(r: UserRegistry = Depends(get_registry)):
    """获取节点连接和监听状态"""
    result = {
        "connected": await r.connection.is_connected(),
        "contract_address": r.contract_address,
        "from": r.sender,
        "listening": r.listening,
        "chain_id": None,
        "block_number": None,
    }
    try:
        result["chain_id"] = await r.connection.get_chain_id()
        result["block_number"] = await r.connection.get_block_number()
    except ChainError as e:
        logger.warning("Status query failed: %s", e)
    return result


@app.get("/api/contract-info")
async def get_contract_info(r: UserRegistry = Depends(get_registry)):
    """获取合约信息"""
    return {
        "address": r.contract_address,
        "abi": USER_REGISTRY_ABI,
    }


@app.post("/addUser", response_model=AddUserResponse, response_model_by_alias=True)
async def add_user(request: AddUserRequest, r: UserRegistry = Depends(get_registry)):
    """
    注册用户（发送交易并等待上链）

    参数:
    - name: 用户名
    - age: 年龄
    - email: 邮箱
    """
    try:
        receipt = await r.add_user(request.name, request.age, request.email)
    except Exception as e:
        logger.error("Error adding user: %s", e)
        return _failure("Failed to add user", e, **{"from": r.sender})

    return {
        "success": True,
        "message": "User added successfully",
        "transactionHash": receipt.transaction_hash,
        "from": r.sender,
    }


@app.get("/getAllUserNames", response_model=UserNamesResponse)
async def get_all_user_names(r: UserRegistry = Depends(get_registry)):
    """获取所有用户名"""
    try:
        names = await r.get_all_user_names()
    except Exception as e:
        logger.error("Error fetching user names: %s", e)
        return _failure("Failed to fetch user names", e)

    return {"success": True, "userNames": names}


@app.get("/getUserByName/{name}", response_model=UserResponse)
async def get_user_by_name(name: str, r: UserRegistry = Depends(get_registry)):
    """按名称查询用户（不存在时返回零值记录）"""
    try:
        user = await r.get_user_by_name(name)
    except Exception as e:
        logger.error("Error fetching user by name: %s", e)
        return _failure("Failed to fetch user by name", e)

    return {"success": True, "user": user.to_dict()}


@app.get("/listenUserAdded", response_model=MessageResponse)
async def listen_user_added(r: UserRegistry = Depends(get_registry)):
    """开始监听 UserAdded 事件（事件写入日志）"""
    try:
        r.listen_user_added()
    except Exception as e:
        logger.error("Error setting up event listener: %s", e)
        return _failure("Failed to listen to events", e)

    return {"success": True, "message": "Listening for UserAdded events"}


@app.post("/stopListening", response_model=MessageResponse)
async def stop_listening(r: UserRegistry = Depends(get_registry)):
    """停止监听 UserAdded 事件"""
    stopped = await r.stop_listening()
    message = "Stopped listening for UserAdded events" if stopped else "Listener was not running"
    return {"success": True, "message": message}


# ============ 启动入口 ============

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=3000)
