from dataclasses import dataclass

REDIRECT_CODES = (301, 302)


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Config:
    host: str = "0.0.0.0"
    port: int = 9999
    response: bytes = b""
    response_code: int = 200
    redirect: str = ""
    tls: bool = False
    tls_cert: str = ""
    tls_key: str = ""
    workers: int = 4
    queue_size: int = 1000
    backlog: int = 128
    recv_timeout: float = 5.0
    accept_timeout: float = 1.0
    max_header_bytes: int = 65536
    chunk_size: int = 64 * 1024
    debug: bool = False


def build_config(
    response: str = "",
    response_file: str = "",
    response_code: int = 200,
    redirect: str = "",
    tls: bool = False,
    tls_key: str = "",
    tls_cert: str = "",
    **options,
) -> Config:
    """
    Resolve command line values into a Config.
    A redirect target forces 302, and response_file contents win over response.
    """
    if tls and (not tls_key or not tls_cert):
        raise ConfigError("Unable to use TLS, the tls-key or tls-cert flags are missing")

    if response_code in REDIRECT_CODES and not redirect:
        raise ConfigError("Must specify redirect URL with --redirect")

    if redirect:
        response_code = 302

    body = response.encode("utf-8")
    if response_file:
        try:
            with open(response_file, "rb") as f:
                body = f.read()
        except OSError as e:
            raise ConfigError(f"Unable to read response file {response_file!r}: {e}") from e

    return Config(
        response=body,
        response_code=response_code,
        redirect=redirect,
        tls=tls,
        tls_cert=tls_cert,
        tls_key=tls_key,
        **options,
    )
