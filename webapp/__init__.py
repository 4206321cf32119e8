"""HTTP surface for the trading gateway.

Run with `uvicorn webapp.app:create_app --factory` or `python main.py serve`.
"""
