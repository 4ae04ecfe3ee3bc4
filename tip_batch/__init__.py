"""
tip_batch -- Deferred settlement of reactdrops.

Persists reactdrops at creation and settles them from an independent
background sweep once their deadline passes.  Nothing in tip_kernel
imports from tip_batch.

Invariants:
    - A reactdrop is settled at most once, even with concurrent sweepers
      (conditional pending -> settling claim).
    - Settlement never depends on the messaging session that created it.
    - A reactdrop never returns to pending.
"""
