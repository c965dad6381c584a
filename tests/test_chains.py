"""Chain adapters against a mocked JSON-RPC endpoint"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest
import requests

from chains import (
    AdapterError,
    ChainId,
    MidenAdapter,
    SimulatedChainAdapter,
    ZcashAdapter,
    build_adapters,
    zatoshi_to_zec,
)
from chains.miden import DEFAULT_NOTE_SCRIPT
from chains.zcash import encode_memo
from config.config import ChainConfig


def mock_session(result=None, error=None, json_error=None, http_error=None):
    response = MagicMock()
    if http_error is not None:
        response.raise_for_status.side_effect = http_error
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        body = {'jsonrpc': '2.0', 'id': 1}
        if error is not None:
            body['error'] = error
        else:
            body['result'] = result
        response.json.return_value = body

    session = MagicMock(spec=requests.Session)
    session.post.return_value = response
    return session


def sent_payload(session):
    _, kwargs = session.post.call_args
    return kwargs['json']


# ============================================================================
# ZCASH
# ============================================================================


def test_zatoshi_conversion_is_exact():
    assert zatoshi_to_zec(100_000_000) == "1"
    assert zatoshi_to_zec(1) == "0.00000001"
    assert zatoshi_to_zec(123_456_789_012_345_678) == "1234567890.12345678"


def test_memo_encoding():
    assert encode_memo("hi") == "6869"
    with pytest.raises(ValueError):
        encode_memo("x" * 513)


def test_zcash_lock_sends_to_custody():
    session = mock_session(result="opid-1234")
    adapter = ZcashAdapter("http://zcash.test", custody_address="zs1custody",
                           funding_address="zs1funding", session=session)

    receipt = asyncio.run(adapter.lock(150_000_000, "Bridge to Miden: transfer_1"))

    payload = sent_payload(session)
    assert payload['method'] == 'z_sendmany'
    from_address, outputs = payload['params']
    assert from_address == "zs1funding"
    assert outputs == [{
        'address': "zs1custody",
        'amount': "1.5",
        'memo': "Bridge to Miden: transfer_1".encode().hex(),
    }]
    assert receipt.tx_id == "opid-1234"
    assert receipt.chain is ChainId.ZCASH
    assert receipt.operation == 'lock'


def test_zcash_release_pays_recipient():
    session = mock_session(result="opid-5678")
    adapter = ZcashAdapter("http://zcash.test", "zs1custody", "zs1funding", session=session)

    receipt = asyncio.run(adapter.release(42, "zs1recipient"))

    from_address, outputs = sent_payload(session)['params']
    assert from_address == "zs1custody"
    assert outputs[0]['address'] == "zs1recipient"
    assert outputs[0]['amount'] == "0.00000042"
    assert receipt.amount == 42


def test_rpc_error_member_becomes_adapter_error():
    session = mock_session(error={'code': -6, 'message': "Insufficient funds"})
    adapter = ZcashAdapter("http://zcash.test", "zs1custody", "zs1funding", session=session)

    with pytest.raises(AdapterError) as exc_info:
        asyncio.run(adapter.lock(1, "memo"))

    assert exc_info.value.chain is ChainId.ZCASH
    assert exc_info.value.operation == 'lock'
    assert "Insufficient funds" in str(exc_info.value)


def test_transport_failure_is_chained():
    session = MagicMock(spec=requests.Session)
    session.post.side_effect = requests.ConnectionError("connection refused")
    adapter = ZcashAdapter("http://zcash.test", "zs1custody", "zs1funding", session=session)

    with pytest.raises(AdapterError) as exc_info:
        asyncio.run(adapter.release(1, "zs1recipient"))
    assert isinstance(exc_info.value.__cause__, requests.ConnectionError)


def test_http_error_becomes_adapter_error():
    session = mock_session(http_error=requests.HTTPError("502 Bad Gateway"))
    adapter = MidenAdapter("http://miden.test", bridge_account="acct", session=session)

    with pytest.raises(AdapterError):
        asyncio.run(adapter.release(1, "miden_alice"))


def test_invalid_json_becomes_adapter_error():
    session = mock_session(json_error=ValueError("no json"))
    adapter = MidenAdapter("http://miden.test", bridge_account="acct", session=session)

    with pytest.raises(AdapterError):
        asyncio.run(adapter.lock(1, "memo"))


def test_missing_result_becomes_adapter_error():
    session = mock_session(result=None)
    adapter = ZcashAdapter("http://zcash.test", "zs1custody", "zs1funding", session=session)

    with pytest.raises(AdapterError):
        asyncio.run(adapter.lock(1, "memo"))


# ============================================================================
# MIDEN
# ============================================================================


def test_miden_release_submits_note():
    session = mock_session(result={'tx_hash': "0xabc"})
    adapter = MidenAdapter("http://miden.test", bridge_account="bridge_acct",
                           faucet_id="faucet_1", session=session)

    receipt = asyncio.run(adapter.release(10 ** 20, "miden_alice"))

    payload = sent_payload(session)
    assert payload['method'] == 'submit_note'
    params = payload['params']
    assert params['note_id'].startswith("note_")
    assert params['recipient'] == "miden_alice"
    assert params['assets'] == [{'faucet_id': "faucet_1", 'amount': str(10 ** 20)}]
    assert params['script'] == DEFAULT_NOTE_SCRIPT
    assert len(params['serial_num']) == 64

    assert receipt.tx_id == "0xabc"
    assert receipt.amount == 10 ** 20
    assert receipt.details['note_id'] == params['note_id']


def test_miden_lock_targets_bridge_account():
    session = mock_session(result="0xdef")
    adapter = MidenAdapter("http://miden.test", bridge_account="bridge_acct", session=session)

    receipt = asyncio.run(adapter.lock(7, "Bridge to Zcash: transfer_2"))

    params = sent_payload(session)['params']
    assert params['recipient'] == "bridge_acct"
    assert params['inputs'] == ["Bridge to Zcash: transfer_2"]
    assert receipt.tx_id == "0xdef"


def test_zcash_get_transaction_queries_txid():
    session = mock_session(result={'txid': "ab12", 'confirmations': 3})
    adapter = ZcashAdapter("http://zcash.test", "zs1custody", "zs1funding", session=session)

    tx = asyncio.run(adapter.get_transaction("ab12"))

    payload = sent_payload(session)
    assert payload['method'] == 'gettransaction'
    assert payload['params'] == ["ab12"]
    assert tx['confirmations'] == 3


def test_miden_get_note_queries_note_id():
    session = mock_session(result={'note_id': "note_1_ab", 'status': "committed"})
    adapter = MidenAdapter("http://miden.test", bridge_account="acct", session=session)

    note = asyncio.run(adapter.get_note("note_1_ab"))

    payload = sent_payload(session)
    assert payload['method'] == 'get_note'
    assert payload['params'] == {'note_id': "note_1_ab"}
    assert note['status'] == "committed"


def test_query_failure_becomes_adapter_error():
    session = mock_session(error={'code': -5, 'message': "Invalid or non-wallet transaction id"})
    adapter = ZcashAdapter("http://zcash.test", "zs1custody", "zs1funding", session=session)

    with pytest.raises(AdapterError) as exc_info:
        asyncio.run(adapter.get_transaction("missing"))
    assert exc_info.value.operation == 'query'


def test_request_ids_are_unique_across_threads():
    adapter = ZcashAdapter("http://zcash.test", "zs1custody", "zs1funding", session=mock_session())
    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(lambda _: adapter._next_id(), range(400)))
    assert sorted(ids) == list(range(1, 401))


def test_note_ids_are_unique():
    adapter = MidenAdapter("http://miden.test", bridge_account="acct", session=mock_session())
    notes = {adapter.create_note(1, "r").id for _ in range(50)}
    assert len(notes) == 50


# ============================================================================
# SIMULATED ADAPTERS
# ============================================================================


def test_simulated_adapter_records_and_injects_failures():
    adapter = SimulatedChainAdapter(ChainId.MIDEN)

    async def scenario():
        await adapter.lock(5, "memo")
        adapter.fail_next('release')
        with pytest.raises(AdapterError):
            await adapter.release(5, "r")
        await adapter.release(5, "r")

        adapter.fail_always.add('lock')
        for _ in range(2):
            with pytest.raises(AdapterError):
                await adapter.lock(1, "memo")

    asyncio.run(scenario())
    assert [c.operation for c in adapter.calls] == ['lock', 'release']
    assert len(adapter.calls_for('release')) == 1


def test_build_adapters_respects_simulate_flag():
    simulated = build_adapters(ChainConfig(simulate=True))
    assert all(isinstance(a, SimulatedChainAdapter) for a in simulated.values())
    assert set(simulated) == {ChainId.ZCASH, ChainId.MIDEN}

    live = build_adapters(ChainConfig(simulate=False, zcash_rpc="http://z", miden_rpc="http://m"))
    assert isinstance(live[ChainId.ZCASH], ZcashAdapter)
    assert isinstance(live[ChainId.MIDEN], MidenAdapter)
    assert live[ChainId.ZCASH].rpc_url == "http://z"
    assert live[ChainId.MIDEN].rpc_url == "http://m"


def test_chain_ids():
    assert ChainId.ZCASH.numeric_id == 0
    assert ChainId.MIDEN.numeric_id == 1
    assert ChainId.MIDEN.display_name == "Miden"
