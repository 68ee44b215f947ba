"""
Out-of-sample backtesting framework.

Key principles:
- NO conclusions from in-sample results alone
- Train and test windows never overlap (purge/embargo applied)
- One fresh engine per window
- Regime-segmented evaluation
"""
