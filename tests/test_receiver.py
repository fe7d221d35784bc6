"""
Tests for the telemetry receiver and the full sender -> receiver path.
"""

import threading
import time

import pytest

import facility_link.sender as sender_module
from facility_link.config import ReceiverConfig, SenderConfig
from facility_link.crypto.session import SessionManager, derive_sender_session
from facility_link.errors import DecryptError, DecryptReason, KeyLoadError, PacketFormatError
from facility_link.protocol.codec import encode
from facility_link.protocol.packet import Packet, PacketHeader
from facility_link.receiver import TelemetryReceiver
from facility_link.sender import TelemetrySender
from facility_link.telemetry.record import TelemetryRecord
from facility_link.telemetry.sources import StaticSource, StaticSubnetwork
from facility_link.transport.tunnel import LoopbackTunnel


def sealed_packet(record, receiver_public, sender_id="fuel-plant", curve_bits=384):
    session = derive_sender_session(None, receiver_public, curve_bits)
    iv, ciphertext = encode(record, session.key)
    return Packet(PacketHeader(sender_id, session.public_key, iv), ciphertext)


@pytest.fixture
def link():
    """(sender end, receiver end) of a loopback tunnel"""
    return LoopbackTunnel.pair()


class TestReceiveOne:

    def test_single_shot_receive(self, link, receiver_key, sample_record):
        sender_end, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=1.0)

        sender_end.send(sealed_packet(sample_record, receiver_key.public_key()).to_bytes())
        assert receiver.receive_one() == sample_record

    def test_await_one_times_out(self, link, receiver_key):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=0.05)
        assert receiver.await_one() is None
        assert receiver.receive_one(timeout=0.01) is None

    def test_await_one_returns_packet(self, link, receiver_key, sample_record):
        sender_end, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key)
        packet = sealed_packet(sample_record, receiver_key.public_key())
        sender_end.send(packet.to_bytes())
        assert receiver.await_one(timeout=1.0) == packet

    def test_process_rejects_wrong_receiver(self, receiver_key, other_receiver_key, sample_record, link):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, other_receiver_key)
        raw = sealed_packet(sample_record, receiver_key.public_key()).to_bytes()
        with pytest.raises(DecryptError) as exc:
            receiver.process(raw)
        assert exc.value.reason is DecryptReason.AUTHENTICATION

    def test_process_rejects_curve_mismatch(self, receiver_key, p256_key, sample_record, link):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key)
        raw = sealed_packet(sample_record, p256_key.public_key(), curve_bits=256).to_bytes()
        with pytest.raises(DecryptError) as exc:
            receiver.process(raw)
        assert exc.value.reason is DecryptReason.KEY_AGREEMENT

    def test_process_rejects_garbage(self, receiver_key, link):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key)
        with pytest.raises(PacketFormatError):
            receiver.process(b"\x00\x01garbage")

    def test_rejects_non_positive_timeout(self, receiver_key, link):
        with pytest.raises(ValueError):
            TelemetryReceiver(link[1], receiver_key, receive_timeout=0)


class TestSessionKeyCache:

    def test_reused_session_key_is_cached(self, receiver_key, sample_record, link):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key)
        session = derive_sender_session(None, receiver_key.public_key(), 384)

        for _ in range(3):
            iv, ciphertext = encode(sample_record, session.key)
            assert receiver.open(Packet(PacketHeader("s", session.public_key, iv), ciphertext)) == sample_record
        assert len(receiver._keys) == 1

    def test_new_ephemeral_key_derives_fresh(self, receiver_key, sample_record, link):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key)
        for _ in range(3):
            assert receiver.open(sealed_packet(sample_record, receiver_key.public_key())) == sample_record
        assert len(receiver._keys) == 3

    def test_cache_is_bounded(self, receiver_key, sample_record, link):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key)
        receiver.KEY_CACHE_SIZE = 2
        for _ in range(4):
            receiver.open(sealed_packet(sample_record, receiver_key.public_key()))
        assert len(receiver._keys) == 2


class TestReceiveLoop:
    """A bad packet must never stop the receiver."""

    def test_bad_packet_does_not_block_next(self, link, receiver_key, other_receiver_key, sample_record):
        sender_end, receiver_end = link
        records = []
        receiver = TelemetryReceiver(
            receiver_end, receiver_key, receive_timeout=0.5,
            on_record=lambda record, packet: records.append(record),
        )

        sender_end.send(b"not a packet")
        sender_end.send(sealed_packet(sample_record, other_receiver_key.public_key()).to_bytes())
        sender_end.send(sealed_packet(sample_record, receiver_key.public_key()).to_bytes())

        receiver.run(max_packets=3)

        assert records == [sample_record]
        assert receiver.stats.received == 3
        assert receiver.stats.decoded == 1
        assert receiver.stats.rejected == {"packet_format": 1, "decrypt_authentication": 1}

    def test_deeply_nested_packet_is_rejected(self, link, receiver_key, sample_record):
        sender_end, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=0.5)

        sender_end.send(b"[" * 60000)
        sender_end.send(sealed_packet(sample_record, receiver_key.public_key()).to_bytes())
        receiver.run(max_packets=2)

        assert receiver.stats.decoded == 1
        assert receiver.stats.rejected == {"packet_format": 1}

    def test_failing_callback_does_not_stop_loop(self, link, receiver_key, sample_record):
        sender_end, receiver_end = link
        seen = []

        def deliver(record, packet):
            seen.append(record)
            raise OSError("disk full")

        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=0.5, on_record=deliver)
        for _ in range(2):
            sender_end.send(sealed_packet(sample_record, receiver_key.public_key()).to_bytes())
        receiver.run(max_packets=2)

        assert len(seen) == 2
        assert receiver.stats.decoded == 2
        assert receiver.stats.delivery_errors == 2
        assert receiver.stats.rejected == {}

    def test_stop_ends_loop(self, link, receiver_key):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=0.05)
        thread = threading.Thread(target=receiver.run)
        thread.start()
        time.sleep(0.1)
        receiver.stop()
        thread.join(timeout=2)
        assert not thread.is_alive()

    def test_transport_error_is_not_fatal(self, link, receiver_key):
        _, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=0.05)
        receiver_end.close()

        thread = threading.Thread(target=receiver.run)
        thread.start()
        thread.join(timeout=0.3)
        assert thread.is_alive()
        receiver.stop()
        thread.join(timeout=2)
        assert receiver.stats.transport_errors >= 1


class TestFromConfig:

    def test_loads_identity(self, receiver_key, key_files, link):
        private_path, _ = key_files(receiver_key)
        config = ReceiverConfig(name="decoder", private_key=str(private_path), key_size=384).validate()
        receiver = TelemetryReceiver.from_config(config, tunnel=link[1])
        assert receiver.private_key.private_numbers() == receiver_key.private_numbers()

    def test_public_key_is_rejected(self, receiver_key, key_files, link):
        _, public_path = key_files(receiver_key)
        config = ReceiverConfig(name="decoder", private_key=str(public_path)).validate()
        with pytest.raises(KeyLoadError):
            TelemetryReceiver.from_config(config, tunnel=link[1])


class TestEndToEnd:
    """Sender tick through the tunnel to a decoded record on the receiver."""

    def test_p384_scenario(self, receiver_key, key_files, link, monkeypatch):
        private_path, public_path = key_files(receiver_key)
        sender_end, receiver_end = link

        expected = TelemetryRecord(
            timestamp="2026-10-19T12:00:00+00:00",
            subnetwork_id="ctrl-1",
            energy=120.50,
            items={"stick": 64},
            fluids={},
        )
        monkeypatch.setattr(sender_module, "collect", lambda subnetwork: expected)

        sender = TelemetrySender.from_config(
            SenderConfig(name="collector", peer_public_key=str(public_path), key_size=384,
                         sender_id="fuel-plant").validate(),
            tunnel=sender_end,
            source=StaticSource([StaticSubnetwork("ctrl-1")]),
        )
        received = []
        receiver = TelemetryReceiver.from_config(
            ReceiverConfig(name="decoder", private_key=str(private_path), receive_timeout=1.0).validate(),
            tunnel=receiver_end,
            on_record=lambda record, packet: received.append((record, packet.header.sender_id)),
        )

        assert sender.tick() == 1
        receiver.run(max_packets=1)

        assert received == [(expected, "fuel-plant")]
        record = received[0][0]
        assert record.energy == 120.50
        assert record.items == {"stick": 64}
        assert record.fluids == {}

    def test_collected_tick_round_trips(self, receiver_key, link):
        sender_end, receiver_end = link
        sender = TelemetrySender(
            tunnel=sender_end,
            source=StaticSource([
                StaticSubnetwork("ctrl-1", avg_power=3.5, idle_power=0.5,
                                 items=[{"label": "stick", "size": 64}]),
                StaticSubnetwork("ctrl-2"),
            ]),
            sessions=SessionManager(receiver_key.public_key(), 384),
            sender_id="fuel-plant",
        )
        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=1.0)

        sender.tick()
        first = receiver.receive_one()
        second = receiver.receive_one()

        assert first.subnetwork_id == "ctrl-1"
        assert first.energy == pytest.approx(120.0)
        assert first.items == {"stick": 64}
        assert second.subnetwork_id == "ctrl-2"
        assert second.items == {} and second.fluids == {}

    def test_receiver_follows_sender_restart(self, receiver_key, link, sample_record):
        sender_end, receiver_end = link
        receiver = TelemetryReceiver(receiver_end, receiver_key, receive_timeout=1.0)

        # two sender processes, each with its own ephemeral session
        for _ in range(2):
            sender_end.send(sealed_packet(sample_record, receiver_key.public_key()).to_bytes())
            assert receiver.receive_one() == sample_record
