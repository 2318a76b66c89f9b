"""Stock competition simulator.

Runs a multi-day stock-trading competition: a day-control state machine with
an auto-advance scheduler, and an atomic ledger for trades and daily
interest.

Example usage:
    from stock_sim.app import build_simulator
    from stock_sim.config import load_settings

    sim = build_simulator(load_settings(db_path="data/demo.duckdb"))
    sim.controller.start()
    summary = sim.trading.execute_trades(
        participant_id,
        [{"stock_code": "AKNA", "type": "BUY", "quantity": 100}],
    )
    sim.controller.advance()
"""

__version__ = "0.1.0"
