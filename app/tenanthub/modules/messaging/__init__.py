"""
Messaging: direct and group conversations between users of one tenant.

- Conversation membership is tracked per participant (left_at = soft leave)
- Each message fans out one delivery row per other active participant
- Read state is a per-participant pointer plus per-delivery read_at
"""
