"""
upkeep_funding -- Funding watchdog for registry jobs.

A watchdog tracks a watch-list of job ids, scans a rotating window of it
for jobs whose registry balance fell below a percentage of their minimum
balance, and tops them up from its own funding-token balance.

Architecture:
    upkeep_funding depends on upkeep_kernel only.  Managers reach a
    watchdog through the ``WatchListSink`` protocol wired by the
    orchestrator.
"""
