"""Install script served at /install."""

from typing import Optional


def render_install_script(server_addr: Optional[str]) -> str:
    """Render the shell script that installs the client and joins this server.

    Usage on a new client: curl -sk https://<server>/install | sh
    """
    if not server_addr:
        return (
            "#!/bin/sh\n"
            "echo 'Server not configured to allow simple install.'\n"
            "echo 'If you are the administrator, set server_addr in server.yaml.'\n"
        )

    return (
        "#!/bin/sh\n"
        "set -e\n"
        "command -v pip3 >/dev/null 2>&1 || { echo 'pip3 is required to install pcopy'; exit 1; }\n"
        "pip3 install --user --upgrade pcopy\n"
        "echo 'pcopy downloaded and installed'\n"
        f"pcopy join {server_addr}\n"
    )
