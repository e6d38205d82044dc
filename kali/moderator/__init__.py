"""Action validation and execution for the voice moderator.

Generator output (LLM or scripted) flows through one pipeline: validate the
whole batch against a simulated state, execute it, then let board effects,
decision points and turn order follow up.
"""
