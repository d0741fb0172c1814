"""tqqq_phase – moving-average phase engine for a fixed ETF basket.

Ingests daily closes (Twelve Data) for the basket, blends in a scraped
Fear & Greed score resolved through a chain of sources and relay proxies,
and derives a LONG/HEDGE phase with BUY/SELL signals from a 100/200-day
crossover rule on the anchor symbol.

A single ``CycleController`` decides per tick between a full historical
reload and an incremental live refresh; ``BackgroundPoller`` drives it
on the smart interval computed from the daily request budget.
"""
