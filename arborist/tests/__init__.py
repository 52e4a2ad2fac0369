"""
Test suite for arborist.

Test Categories:
- Catalog and sizing tests
- Instruction building and PDA derivation tests
- Signer resolution and configuration tests
- Solana client and CLI tests against RPC test doubles
"""
