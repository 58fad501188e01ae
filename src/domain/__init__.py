"""Room lifecycle rules (pure logic).

Phase ordering, progress ratios, vote counting and tie-break draws live here.
Nothing in this package opens a DB session, talks to Redis or FastAPI, reads the
clock or touches global random state; callers pass ``now`` and ``rng`` in.
"""
