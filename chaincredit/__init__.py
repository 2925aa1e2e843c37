"""
ChainCredit — Credit Score Aggregation & Attestation Engine

On-chain wallet activity and an attested off-chain credit record,
blended into one composite score.
"""
__version__ = "1.0.0"
