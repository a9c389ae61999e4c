"""
Team Health Metrics Services

- sources: GitHub and Google Sheets data sources
- metrics: metric model, aggregation and persistence
- streaming: SSE progress streaming
- api: aiohttp application exposing /metrics
"""
