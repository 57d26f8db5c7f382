"""
upkeep_jobs -- Membership lifecycle managers and batch workers.

A manager owns an insertion-ordered, never-compacted entity list and
assigns entities to fixed-capacity jobs registered with the job registry.
Each job is driven by the BatchWorker, which walks a cursor over the
job's index range once per interval, running one entity action per slot
in its own SAVEPOINT.

Architecture:
    upkeep_jobs depends on upkeep_kernel.  Only orchestrator.py imports
    upkeep_funding (to wire watch-list updates); nothing in upkeep_funding
    imports upkeep_jobs.

Variants:
    GaugeUpkeepManager         -- "distribute" per gauge, weekly epochs
    RedistributeUpkeepManager  -- "distribute", owner-settable batch size
    TokenUpkeepManager         -- "fetch_price" per whitelisted token, hourly
"""
