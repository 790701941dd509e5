"""
Escrow app: funds locked between two participants until release, dispute
or timeout.

Entry point for callers is escrow.services.EscrowService.
"""
