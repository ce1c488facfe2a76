"""
Protocol-wide constants.

- DRM system identifiers found in PSSH boxes
- Root public keys used to anchor certificate verification
- The license-service point key used by the PlayReady challenge
- Limits shared by the session manager
"""

WIDEVINE_SYSTEM_ID = bytes.fromhex("edef8ba979d64acea3c827dcd51d21ed")
PLAYREADY_SYSTEM_ID = bytes.fromhex("9a04f07998404286ab92e65be0885f95")

# Widevine root DrmCertificate public key (RSA-3072, e=65537)
WIDEVINE_ROOT_MODULUS = bytes.fromhex(
    "915f33d2508264b4783f5596a6ceb5f7"
    "12e812a76f03e5073e51d4f8b9dc1cfe"
    "c53d416d88d212ac3c9358ec23b81112"
    "2747e42be7e718fd08a5ff8415687d4c"
    "8a947c811c31977f4bea3c47e4370d59"
    "e024b3111fec35c88844560d82019ff2"
    "b219ed2514ad13398c695e0629e4bf4c"
    "6082dc8f78b07fbedc6d19d26fef75dc"
    "175b77485e4ffa30aab7d2fb003d111a"
    "607cba53c3ebdc11ff33455e52799802"
    "e012e6b48eb8f9b1338cca3474e4366b"
    "ff116cc8f5650e9218aa8448889bb827"
    "1f89ba4bec7db933b2b72b4882fdfc63"
    "193e178ae9b07e729ccbb4c15c824db4"
    "29bdc1faa0723ebc6f9325e22750407e"
    "fd202670208288a8ccd784eb979a539c"
    "852519e1d7d645719da91022d9baa976"
    "aedf4cd6920f8f1376a7fd09fd5f473e"
    "536948b54bec725b53ab8b2334be2280"
    "35b0fbab39848acb430e462f5d681615"
    "789821c5df66beb87f722695a9409c3f"
    "d236b3db78a67d356df64c530357a035"
    "9ffbdcdf6587db10b1234de7f29b5ec3"
    "f2cd68e80997113cdb039065c339feb4"
)
WIDEVINE_ROOT_EXPONENT = 65537

# PlayReady root issuer key (P-256, X || Y)
PLAYREADY_ROOT_ISSUER_KEY = bytes.fromhex(
    "864d61cff2256e422c568b3c28001cfb"
    "3e1527658584ba0521b79b1828d936de"
    "1d826a8fc3e6e7fa7a90d5ca2946f1f6"
    "4a2efb9f5dcffe7e434eb44293fac5ab"
)

# WMRM license-service key; challenge session keys are ElGamal-encrypted to it
WMRM_SERVER_KEY = bytes.fromhex(
    "c8b6af16ee941aadaa5389b4af2c10e3"
    "56be42af175ef3face93254e7b0b3d9b"
    "982b27b5cb2341326e56aa857dbfd5c6"
    "34ce2cf9ea74fca8f2af5957efeea562"
)

# XOR mask for the scalable (Ecc256ViaSymmetric) key chain
MAGIC_CONSTANT_ZERO = bytes.fromhex("7ee9ed4af773224f00b8ea7efb027cbb")

# NIST P-256 field prime
P256_PRIME = 0xFFFFFFFF00000001000000000000000000000000FFFFFFFFFFFFFFFFFFFFFFFF

MAX_SESSIONS = 16
KID_SIZE = 16
WIDEVINE_PROTOCOL_VERSION = 21
PLAYREADY_CLIENT_VERSION = "10.0.16384.10011"
BCERT_MAX_CHAIN_LENGTH = 6
