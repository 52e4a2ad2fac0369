"""
arborist: create Metaplex Bubblegum Merkle trees and delegate their authority.
"""

__version__ = '0.1.0'
