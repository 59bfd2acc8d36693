"""Project-wide named constants.

Constants defined here replace inline magic numbers across the codebase.
"""

# 20 decimal digits hold every unsigned 64-bit block number
# (18,446,744,073,709,551,615), so zero-padded names sort lexicographically
# in numeric order for the whole range.
BLOCK_NUMBER_WIDTH: int = 20

# Producers write the next block to a file carrying this marker and rename
# it to the final block name once complete.
TEMP_FILE_MARKER: str = "tmp-tx-log"

# Cursor value meaning "nothing uploaded yet"; block 0 is next.
NO_BLOCK: int = -1

DEFAULT_POLL_INTERVAL_MS: int = 1000

# Consecutive stalled ticks before the missing block is reported.
DEFAULT_STALL_THRESHOLD: int = 10

DEFAULT_UPLOAD_ATTEMPTS: int = 3
