"""
Commit Transaction Recovery Keys

The recovery key is the signing key tweaked with the commitment's merkle
root. It spends the commit output through the key path, so a commit
transaction can be swept back into the wallet without the reveal script.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Protocol, Union

from .exceptions import DescriptorError
from .keys import PrivateKey


logger = logging.getLogger(__name__)

RECOVERY_KEY_LABEL = "commit tx recovery key"
TEMPORARY_KEY_FILE = "key.txt"


class DescriptorWallet(Protocol):
    """Wallet operations needed to back up a recovery key."""

    def get_descriptor_info(self, descriptor: str) -> Dict[str, Any]:
        ...

    def import_descriptors(self, requests: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        ...


@dataclass(frozen=True)
class TweakedKeyPair:
    """
    Signing key together with its Taproot tweak for a given merkle root.
    """
    internal: PrivateKey
    tweaked: PrivateKey
    merkle_root: bytes
    negated: bool

    @classmethod
    def from_key(cls, key: PrivateKey, merkle_root: bytes) -> 'TweakedKeyPair':
        """
        Tweak ``key`` with ``merkle_root``.

        Args:
            key: Untweaked signing key
            merkle_root: Merkle root of the committed script tree

        Returns:
            Tweaked key pair
        """
        tweaked, negated = key.taproot_tweak_private_key(merkle_root)
        return cls(internal=key, tweaked=tweaked, merkle_root=merkle_root, negated=negated)

    @property
    def output_key(self) -> bytes:
        """x-only public key of the tweaked key."""
        return self.tweaked.public_key().x_only

    def matches(self, output_key: bytes) -> bool:
        """True if tweaking reproduces ``output_key``."""
        return self.output_key == output_key

    def raw_descriptor(self, chain: str) -> str:
        """``rawtr(WIF)`` descriptor without checksum."""
        return f"rawtr({self.tweaked.to_wif(chain)})"


def recovery_descriptor(descriptor: str, checksum: str) -> str:
    """Append a descriptor checksum: ``desc#checksum``."""
    if not checksum:
        raise DescriptorError("descriptor checksum is empty")
    return f"{descriptor}#{checksum}"


def describe_recovery_key(wallet: DescriptorWallet, key_pair: TweakedKeyPair, chain: str) -> str:
    """
    Build the checksummed recovery descriptor for ``key_pair``.

    Args:
        wallet: Wallet that computes descriptor checksums
        key_pair: Tweaked recovery key pair
        chain: Chain name used for WIF encoding

    Returns:
        ``rawtr(WIF)#checksum`` descriptor
    """
    descriptor = key_pair.raw_descriptor(chain)
    info = wallet.get_descriptor_info(descriptor)
    return recovery_descriptor(descriptor, info.get('checksum', ''))


def backup_recovery_key(wallet: DescriptorWallet, key_pair: TweakedKeyPair, chain: str) -> str:
    """
    Import the recovery key into the wallet as an inactive descriptor.

    Args:
        wallet: Wallet receiving the descriptor
        key_pair: Tweaked recovery key pair
        chain: Chain name used for WIF encoding

    Returns:
        Imported descriptor
    """
    descriptor = describe_recovery_key(wallet, key_pair, chain)

    response = wallet.import_descriptors([{
        'desc': descriptor,
        'active': False,
        'timestamp': 'now',
        'internal': False,
        'label': RECOVERY_KEY_LABEL,
    }])

    for result in response:
        if not result.get('success', False):
            raise DescriptorError("commit tx recovery key import failed")

    logger.info("Imported commit tx recovery key")
    return descriptor


def load_or_create_temporary_key(data_dir: Union[str, Path], chain: str) -> str:
    """
    Return the WIF stored in ``data_dir/key.txt``, creating it on first use.

    Args:
        data_dir: Directory holding the key file
        chain: Chain name used for WIF encoding of a new key

    Returns:
        WIF encoded private key
    """
    data_dir = Path(data_dir)
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DescriptorError(f"failed to create data dir `{data_dir}`: {e}")

    key_path = data_dir / TEMPORARY_KEY_FILE
    if key_path.exists():
        return key_path.read_text().rstrip()

    wif = PrivateKey().to_wif(chain)
    key_path.write_text(f"{wif}\n")
    logger.info(f"Created temporary key file {key_path}")
    return wif
