"""Live market heatmap engine.

Keeps one price tile per instrument and reconciles two sources into it:
a seeded random-walk simulation and polled live quotes (Finnhub REST or
yfinance), under a shared rate limit.

Usage:
    python -m heatmap.main          # engine + Rich console
    uvicorn app.main:app            # engine behind the HTTP API
"""
