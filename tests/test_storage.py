"""
Encrypted store tests
"""
import json

import pytest

from hodl.exceptions import ConfigError
from hodl.storage import EncryptedStore


class TestPlainValues:
    """Path-addressed JSON values"""

    def test_set_get_nested(self, store):
        store.set('networkUsage', 'eth', 3)
        assert store.get('networkUsage', 'eth') == 3
        assert store.get('networkUsage') == {'eth': 3}
        assert store.get('missing', 'path') is None

    def test_persists_across_instances(self, store, tmp_path):
        store.set('settings', 'theme', 'dark')
        reopened = EncryptedStore(directory=str(tmp_path), filename="store.json", encryption_key="test-passphrase")
        assert reopened.get('settings', 'theme') == 'dark'

    def test_append(self, store):
        store.append('transactions', '0xabc', 'ETH', {'hash': '1'})
        store.append('transactions', '0xabc', 'ETH', {'hash': '2'})
        assert [t['hash'] for t in store.get('transactions', '0xabc', 'ETH')] == ['1', '2']

    def test_append_to_scalar(self, store):
        store.set('count', 1)
        with pytest.raises(ValueError):
            store.append('count', 2)

    def test_delete(self, store):
        store.set('a', 'b', 1)
        store.delete('a', 'b')
        assert store.get('a', 'b') is None
        store.delete('never', 'there')

    def test_empty_path(self, store):
        with pytest.raises(ValueError):
            store.get()
        with pytest.raises(ValueError):
            store.set('', 1)

    def test_non_serialisable_value(self, store):
        with pytest.raises(TypeError):
            store.set('bad', object())
        assert store.get('bad') is None

    def test_no_temp_files_left(self, store, tmp_path):
        store.set('a', 1)
        store.set('b', 2)
        assert sorted(p.name for p in tmp_path.iterdir()) == ['store.json']


class TestSecureValues:
    """Fernet-encrypted branch"""

    def test_round_trip(self, store):
        store.secure_set('mnemonic', 'abandon about')
        assert store.secure_get('mnemonic') == 'abandon about'

    def test_not_plaintext_on_disk(self, store, tmp_path):
        store.secure_set('account', 'account', {'privateKey': '0xsecretvalue'})
        raw = (tmp_path / "store.json").read_text()
        assert '0xsecretvalue' not in raw
        assert 'salt' in json.loads(raw)

    def test_wrong_key_reads_none(self, store, tmp_path):
        store.secure_set('mnemonic', 'abandon about')
        other = EncryptedStore(directory=str(tmp_path), filename="store.json", encryption_key="other")
        assert other.secure_get('mnemonic') is None

    def test_salt_kept_on_reopen(self, store, tmp_path):
        store.secure_set('mnemonic', 'abandon about')
        reopened = EncryptedStore(directory=str(tmp_path), filename="store.json", encryption_key="test-passphrase")
        assert reopened.secure_get('mnemonic') == 'abandon about'

    def test_secure_delete(self, store):
        store.secure_set('account', 'utxo', {'privateKey': 'x'})
        store.secure_delete('account', 'utxo')
        assert store.secure_get('account', 'utxo') is None

    def test_missing_key_raises(self, tmp_path):
        plain = EncryptedStore(directory=str(tmp_path), filename="plain.json", encryption_key=None)
        plain.set('a', 1)
        with pytest.raises(ConfigError):
            plain.secure_set('mnemonic', 'words')
        with pytest.raises(ConfigError):
            plain.secure_get('mnemonic')
