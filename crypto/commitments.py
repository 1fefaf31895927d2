"""
Taproot Script Commitments for Inscriptions

Builds the single-leaf Taproot tree committing to a reveal script: the leaf
sits at depth 0, so the merkle root is the leaf hash and the control block
carries no path elements.

References:
- BIP341: https://github.com/bitcoin/bips/blob/master/bip-0341.mediawiki
"""

import logging
from dataclasses import dataclass

from bitcoinlib.encoding import varstr

from .exceptions import CommitmentError, CryptoError
from .keys import PublicKey, tagged_hash, taproot_output_script


logger = logging.getLogger(__name__)

TAPROOT_LEAF_TAPSCRIPT = 0xc0
TAPROOT_CONTROL_BASE_SIZE = 33

OP_CHECKSIG = 0xac


def tap_leaf_hash(script: bytes, leaf_version: int = TAPROOT_LEAF_TAPSCRIPT) -> bytes:
    """
    Calculate TapLeaf hash according to BIP341.

    Args:
        script: Leaf script
        leaf_version: Leaf version byte

    Returns:
        32-byte leaf hash
    """
    return tagged_hash(
        "TapLeaf", bytes([leaf_version]) + varstr(script)
    )


def reveal_script_prefix(x_only_pubkey: bytes) -> bytes:
    """``<x-only pubkey> OP_CHECKSIG``, the spending condition of a reveal script."""
    if len(x_only_pubkey) != 32:
        raise CommitmentError("Reveal script key must be a 32-byte x-only key")
    return bytes([0x20]) + x_only_pubkey + bytes([OP_CHECKSIG])


@dataclass(frozen=True)
class TaprootCommitment:
    """
    A reveal script committed as the only leaf of a Taproot output.
    """
    script: bytes
    internal_key: bytes  # 32-byte x-only
    output_key: bytes  # 32-byte x-only
    output_parity: int
    leaf_hash: bytes
    merkle_root: bytes
    leaf_version: int = TAPROOT_LEAF_TAPSCRIPT

    @classmethod
    def build(cls, script: bytes, internal_key: PublicKey,
              leaf_version: int = TAPROOT_LEAF_TAPSCRIPT) -> 'TaprootCommitment':
        """
        Commit to ``script`` under ``internal_key``.

        Args:
            script: Composite reveal script
            internal_key: Untweaked internal public key

        Returns:
            Commitment with output key, control block data and merkle root
        """
        leaf_hash = tap_leaf_hash(script, leaf_version)
        merkle_root = leaf_hash

        try:
            output_key, parity = internal_key.taproot_tweak_public_key(merkle_root)
        except CryptoError as e:
            raise CommitmentError(f"Failed to tweak internal key: {e}")

        logger.debug(
            f"Committed {len(script)} byte script under output key {output_key.hex()}"
        )

        return cls(
            script=script,
            internal_key=internal_key.x_only,
            output_key=output_key,
            output_parity=parity,
            leaf_hash=leaf_hash,
            merkle_root=merkle_root,
            leaf_version=leaf_version,
        )

    @property
    def control_block(self) -> bytes:
        """Control block for the script-path spend of the single leaf."""
        return bytes([self.leaf_version | self.output_parity]) + self.internal_key

    @property
    def script_pubkey(self) -> bytes:
        """P2TR output script paying to the commitment."""
        return taproot_output_script(self.output_key)

    def verify_control_block(self, control_block: bytes) -> bool:
        """
        Check that ``control_block`` proves the committed script under the output key.

        Args:
            control_block: Serialized control block

        Returns:
            True if the control block reproduces the output key
        """
        if len(control_block) != TAPROOT_CONTROL_BASE_SIZE:
            return False

        leaf_version = control_block[0] & 0xfe
        parity = control_block[0] & 0x01
        internal = control_block[1:33]

        try:
            leaf_hash = tap_leaf_hash(self.script, leaf_version)
            output_key, output_parity = PublicKey.from_x_only(internal).taproot_tweak_public_key(leaf_hash)
        except CryptoError:
            return False

        return output_key == self.output_key and output_parity == parity
