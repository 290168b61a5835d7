"""
User Registry 链上网关

通过 HTTP API 注册 / 查询 UserRegistry 合约中的用户，并监听 UserAdded 事件
"""

__version__ = "1.0.0"
