"""
Key derivation for every supported chain model.

EVM and Bitcoin accounts are BIP39/BIP32 derived; TON uses its own mnemonic
scheme and keypair derivation with a v4r2 wallet contract for the address.
"""
import logging
import os
import re
from typing import Optional

from bip_utils import (
    Bip39SeedGenerator,
    Bip44Changes,
    Bip84,
    Bip84Coins,
    P2WPKHAddrEncoder,
    Secp256k1PrivateKey,
    WifDecoder,
    WifEncoder,
    WifPubKeyModes,
)
from eth_account import Account as EthAccount
from eth_keys import keys as eth_keys
from mnemonic import Mnemonic
from nacl.signing import SigningKey
from tonsdk.contract.wallet import Wallets, WalletVersionEnum
from tonsdk.crypto import mnemonic_is_valid, mnemonic_new, mnemonic_to_wallet_key

from .config import EVM_DERIVATION_PATH
from .exceptions import InvalidKey
from .models import Account, SecretBuffer
from .utils import mask_private_key

logger = logging.getLogger("hodl.wallets")

# eth-account keeps HD wallet support behind an explicit opt-in
EthAccount.enable_unaudited_hdwallet_features()

MNEMONIC_GEN = Mnemonic("english")

# Word count -> entropy bits
MNEMONIC_STRENGTH = {12: 128, 24: 256}

BTC_PARAMS = {
    'bitcoin': {'coin': Bip84Coins.BITCOIN, 'hrp': 'bc', 'wif_net_ver': b'\x80'},
    'testnet': {'coin': Bip84Coins.BITCOIN_TESTNET, 'hrp': 'tb', 'wif_net_ver': b'\xef'},
}

TON_WALLET_VERSION = WalletVersionEnum.v4r2
TON_WORKCHAIN = 0

_HEX_KEY = re.compile(r'^[0-9a-fA-F]+$')


def normalize_mnemonic(mnemonic: str) -> str:
    """Collapse whitespace and lowercase a phrase."""
    return " ".join(mnemonic.lower().split())


def _check_word_count(word_count: int):
    if word_count not in MNEMONIC_STRENGTH:
        raise ValueError("Mnemonic length must be 12 or 24 words")


# =============================================================================
# BIP39 (EVM and Bitcoin)
# =============================================================================

def generate_mnemonic(word_count: int = 12) -> str:
    """
    Generate a BIP39 mnemonic from the OS entropy source.

    Args:
        word_count (int): 12 or 24

    Returns:
        str: The mnemonic phrase
    """
    _check_word_count(word_count)
    return MNEMONIC_GEN.generate(strength=MNEMONIC_STRENGTH[word_count])


def validate_mnemonic(mnemonic: str) -> bool:
    """
    Check a BIP39 phrase: 12 or 24 words from the wordlist with a valid checksum.

    Args:
        mnemonic (str): The phrase to check

    Returns:
        bool: True if valid
    """
    if not isinstance(mnemonic, str):
        return False
    phrase = normalize_mnemonic(mnemonic)
    if len(phrase.split()) not in MNEMONIC_STRENGTH:
        return False
    try:
        return MNEMONIC_GEN.check(phrase)
    except (ValueError, LookupError):
        return False


def _require_bip39(mnemonic: str, chain: str) -> str:
    if not validate_mnemonic(mnemonic):
        raise InvalidKey("Invalid mnemonic phrase", chain=chain, operation="account_from_mnemonic")
    return normalize_mnemonic(mnemonic)


def _evm_account(eth_account, mnemonic: Optional[str] = None) -> Account:
    return Account(
        address=eth_account.address,
        public_key=eth_keys.PrivateKey(eth_account.key).public_key.to_hex(),
        private_key=SecretBuffer(eth_account.key.to_0x_hex()),
        mnemonic=SecretBuffer(mnemonic) if mnemonic else None,
    )


def derive_evm_account(mnemonic: str, path: str = EVM_DERIVATION_PATH) -> Account:
    """
    Derive an EVM account from a mnemonic.

    Every account-based network shares coin type 60, so the same phrase yields
    the same address on all of them.

    Args:
        mnemonic (str): BIP39 phrase
        path (str): Derivation path

    Returns:
        Account: The derived account
    """
    phrase = _require_bip39(mnemonic, "evm")
    eth_account = EthAccount.from_mnemonic(phrase, account_path=path)
    return _evm_account(eth_account, phrase)


def create_evm_account() -> Account:
    """Create a random EVM account without a mnemonic."""
    return _evm_account(EthAccount.create())


def evm_account_from_key(private_key: str) -> Account:
    """
    Import an EVM account from a hex private key, with or without 0x.

    Raises:
        InvalidKey: If the key is not 32 bytes of hex or is out of range
    """
    key = (private_key or "").strip()
    if key.startswith(('0x', '0X')):
        key = key[2:]
    if len(key) != 64 or not _HEX_KEY.match(key):
        raise InvalidKey("Private key must be 32 bytes of hex", chain="evm", operation="private_key_to_account")
    try:
        eth_account = EthAccount.from_key('0x' + key)
    except Exception as e:
        logger.debug(f"Rejected EVM key {mask_private_key(key)}: {e}")
        raise InvalidKey("Invalid private key", chain="evm", operation="private_key_to_account", cause=e) from e
    return _evm_account(eth_account)


# =============================================================================
# Bitcoin (BIP84 native segwit)
# =============================================================================

def _btc_params(network: str) -> dict:
    if network not in BTC_PARAMS:
        raise ValueError(f"Unknown bitcoin network '{network}'")
    return BTC_PARAMS[network]


def _btc_account_from_raw(raw_key: bytes, network: str, mnemonic: Optional[str] = None) -> Account:
    params = _btc_params(network)
    public_key = Secp256k1PrivateKey.FromBytes(raw_key).PublicKey().RawCompressed().ToBytes()
    address = P2WPKHAddrEncoder.EncodeKey(public_key, hrp=params['hrp'], wit_ver=0)
    wif = WifEncoder.Encode(raw_key, net_ver=params['wif_net_ver'], pub_key_mode=WifPubKeyModes.COMPRESSED)
    return Account(
        address=address,
        public_key=public_key.hex(),
        private_key=SecretBuffer(wif),
        mnemonic=SecretBuffer(mnemonic) if mnemonic else None,
    )


def derive_btc_account(mnemonic: str, network: str = 'bitcoin') -> Account:
    """
    Derive the first BIP84 receive address (m/84'/coin'/0'/0/0) from a mnemonic.

    Args:
        mnemonic (str): BIP39 phrase
        network (str): 'bitcoin' or 'testnet'

    Returns:
        Account: Account with a bech32 address and WIF private key
    """
    phrase = _require_bip39(mnemonic, "bitcoin")
    seed = Bip39SeedGenerator(phrase).Generate()
    ctx = (
        Bip84.FromSeed(seed, _btc_params(network)['coin'])
        .Purpose()
        .Coin()
        .Account(0)
        .Change(Bip44Changes.CHAIN_EXT)
        .AddressIndex(0)
    )
    return _btc_account_from_raw(ctx.PrivateKey().Raw().ToBytes(), network, phrase)


def create_btc_account(network: str = 'bitcoin') -> Account:
    """Create a random Bitcoin account without a mnemonic."""
    while True:
        raw_key = os.urandom(32)
        try:
            return _btc_account_from_raw(raw_key, network)
        except ValueError:
            # Out of curve range, draw again
            continue


def btc_account_from_wif(wif: str, network: str = 'bitcoin') -> Account:
    """
    Import a Bitcoin account from a WIF private key.

    Raises:
        InvalidKey: If the WIF is malformed or belongs to another network
    """
    try:
        raw_key, _ = WifDecoder.Decode((wif or "").strip(), net_ver=_btc_params(network)['wif_net_ver'])
        return _btc_account_from_raw(raw_key, network)
    except Exception as e:
        raise InvalidKey("Invalid WIF private key", chain="bitcoin",
                         operation="private_key_to_account", cause=e) from e


# =============================================================================
# TON
# =============================================================================

def ton_wallet_contract(public_key: bytes, private_key: bytes):
    """Build the v4r2 wallet contract object for a keypair."""
    return Wallets.ALL[TON_WALLET_VERSION](
        public_key=public_key,
        private_key=private_key,
        wc=TON_WORKCHAIN,
    )


def ton_address(wallet) -> str:
    """User friendly, url safe, bounceable form of a wallet address."""
    return wallet.address.to_string(True, True, True)


def _ton_account(public_key: bytes, private_key: bytes, mnemonic: Optional[str] = None) -> Account:
    wallet = ton_wallet_contract(public_key, private_key)
    return Account(
        address=ton_address(wallet),
        public_key=public_key.hex(),
        private_key=SecretBuffer(private_key.hex()),
        mnemonic=SecretBuffer(mnemonic) if mnemonic else None,
    )


def generate_ton_mnemonic(word_count: int = 24) -> str:
    """Generate a TON-native mnemonic phrase."""
    _check_word_count(word_count)
    return " ".join(mnemonic_new(words_count=word_count))


def validate_ton_mnemonic(mnemonic: str) -> bool:
    """Check a TON mnemonic phrase of 12 or 24 words."""
    if not isinstance(mnemonic, str):
        return False
    words = normalize_mnemonic(mnemonic).split()
    if len(words) not in MNEMONIC_STRENGTH:
        return False
    try:
        return bool(mnemonic_is_valid(words))
    except Exception:
        return False


def derive_ton_account(mnemonic: str) -> Account:
    """
    Derive the TON keypair and v4r2 wallet address from a TON mnemonic.

    Raises:
        InvalidKey: If the phrase is not a valid TON mnemonic
    """
    if not validate_ton_mnemonic(mnemonic):
        raise InvalidKey("Invalid mnemonic phrase", chain="ton", operation="account_from_mnemonic")
    words = normalize_mnemonic(mnemonic).split()
    public_key, private_key = mnemonic_to_wallet_key(words)
    return _ton_account(bytes(public_key), bytes(private_key), " ".join(words))


def create_ton_account() -> Account:
    """Create a random TON keypair without a mnemonic."""
    signing_key = SigningKey(os.urandom(32))
    public_key = bytes(signing_key.verify_key)
    return _ton_account(public_key, bytes(signing_key) + public_key)


def ton_account_from_key(private_key: str) -> Account:
    """
    Import a TON account from a hex ed25519 key: a 32-byte seed or the
    64-byte seed+public key secret.

    Raises:
        InvalidKey: If the key is not 32 or 64 bytes of hex
    """
    key = (private_key or "").strip()
    if key.startswith(('0x', '0X')):
        key = key[2:]
    if len(key) not in (64, 128) or not _HEX_KEY.match(key):
        raise InvalidKey("Private key must be 32 or 64 bytes of hex", chain="ton",
                         operation="private_key_to_account")
    raw = bytes.fromhex(key)
    signing_key = SigningKey(raw[:32])
    public_key = bytes(signing_key.verify_key)
    if len(raw) == 64 and raw[32:] != public_key:
        raise InvalidKey("Public half of the key does not match the seed", chain="ton",
                         operation="private_key_to_account")
    return _ton_account(public_key, raw[:32] + public_key)
