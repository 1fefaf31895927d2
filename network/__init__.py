"""
Bitcoin Core RPC access and the wallet adapter used by the batch inscriber.
"""
