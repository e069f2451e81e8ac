# Delhivery NSL codes eligible for each NDR action
reattempt_reason_codes = frozenset(
    {"EOD-74", "EOD-15", "EOD-104", "EOD-43", "EOD-86", "EOD-11", "EOD-69", "EOD-6"}
)

pickup_reschedule_reason_codes = frozenset({"EOD-777", "EOD-21"})

# attempts beyond this count are never authorized, only RTO is
max_authorized_attempt_count = 2

# carriers process NDR instructions in their overnight batch
recommended_action_hour_ist = 21

# auto-resolution flags derived on read
auto_rto_eligible_days = 7
auto_rto_eligible_attempts = 3
max_attempts_reached_count = 3
aging_threshold_days = 10

# NDRs at or beyond this many attempts escalate from L1 to L2
escalation_l2_attempt_count = 3
