"""
数据流分层架构
  Layer 1 – Acquisition  : 数据获取（Yahoo / Alpha Vantage / Finnhub / CoinGecko / NewsAPI / yfinance）
  Layer 2 – Cache        : 进程内 TTL 缓存 + API 配额 + 抓取节流
  Layer 3 – Processing   : 数据清洗与格式化
  Layer 4 – Analysis     : 技术特征、置信度融合、LLM 输出解码
  Sentiment              : 社交情绪占位数据
"""
