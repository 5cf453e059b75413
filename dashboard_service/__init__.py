"""
投资看板数据与分析服务
为零售投资看板提供行情聚合、AI 分析、模拟交易、自选股与提醒等 HTTP 接口

架构分层：
  缓存层     (Cache)        → 进程内 TTL 缓存 + 各数据源限流计数
  数据获取层 (Acquisition)  → Yahoo / Alpha Vantage / Finnhub / CoinGecko / NewsAPI
  处理层     (Processing)   → 代码规范化、OHLCV 标准化、新闻合并去重
  分析层     (Analysis)     → 技术特征、置信度计算、LLM 输出解析
"""

__version__ = "1.0.0"
