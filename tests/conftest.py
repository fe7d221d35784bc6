"""
Shared fixtures for facility link tests.
"""

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from facility_link.telemetry.record import TelemetryRecord


@pytest.fixture(scope="session")
def receiver_key():
    """Receiver's long-lived P-384 identity."""
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture(scope="session")
def other_receiver_key():
    """A second, unrelated P-384 identity."""
    return ec.generate_private_key(ec.SECP384R1())


@pytest.fixture(scope="session")
def p256_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def key_files(tmp_path):
    """Factory writing a private key as <name>.pem and its public half as <name>.pub."""

    def write(private_key, name="ec-key"):
        private_path = tmp_path / f"{name}.pem"
        public_path = tmp_path / f"{name}.pub"
        private_path.write_bytes(private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        ))
        public_path.write_bytes(private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo
        ))
        return private_path, public_path

    return write


@pytest.fixture
def sample_record():
    return TelemetryRecord(
        timestamp="2026-10-19T12:00:00+00:00",
        subnetwork_id="c0ffee00-0000-4000-8000-000000000001",
        energy=120.50,
        items={"stick": 64, "Iron Ingot": 1024},
        fluids={"water": 16000},
    )
