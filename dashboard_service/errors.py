"""
业务异常定义
服务层只抛出这里定义的异常，由 main.py 中注册的处理器统一映射为 HTTP 响应。
"""


class DashboardError(Exception):
    """所有业务异常的基类"""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        """返回给客户端的错误描述"""
        return self.message


# ── 400 ───────────────────────────────────────────────────

class InvalidRequestError(DashboardError):
    """请求参数不合法"""

    status_code = 400


class InsufficientFundsError(InvalidRequestError):
    """模拟账户现金不足"""

    def __init__(self, required: float, available: float) -> None:
        super().__init__("Insufficient cash balance")
        self.required = required
        self.available = available


class InsufficientPositionError(InvalidRequestError):
    """持仓数量不足以卖出"""

    def __init__(self, symbol: str, held: float, requested: float) -> None:
        super().__init__("Insufficient shares to sell")
        self.symbol = symbol
        self.held = held
        self.requested = requested


# ── 404 / 409 ─────────────────────────────────────────────

class NotFoundError(DashboardError):
    """资源不存在，或不属于当前用户"""

    status_code = 404


class AssetNotFoundError(NotFoundError):
    """所有数据源都拿不到该资产的报价"""

    def __init__(self, symbol: str, asset_type: str) -> None:
        super().__init__(f"Asset data not found: {symbol} ({asset_type})")
        self.symbol = symbol
        self.asset_type = asset_type


class ConflictError(DashboardError):
    status_code = 409


# ── 500 ───────────────────────────────────────────────────

class UpstreamError(DashboardError):
    """外部依赖失败；内部细节只写日志，不返回给客户端"""

    status_code = 500

    @property
    def public_message(self) -> str:
        return "Failed to generate analysis"


class LLMError(UpstreamError):
    """LLM 接口调用失败（网络错误、非 2xx、空响应）"""


class AnalysisParseError(UpstreamError):
    """LLM 返回内容无法解析为 JSON 对象"""

    def __init__(self, message: str, raw_content: str = "") -> None:
        super().__init__(message)
        self.raw_content = raw_content
