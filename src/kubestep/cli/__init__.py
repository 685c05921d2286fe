"""
kubestep CLI - Provision a single-node Kubernetes cluster step by step.

Commands:
    kubestep plan       List the provisioning steps and their retry settings
    kubestep provision  Run the provisioning plan
    kubestep artifact   Print or save an artifact produced by a run
    kubestep config     Show the effective configuration
"""

import click

from .artifact import artifact, show_config
from .provision import plan, provision


@click.group()
@click.version_option(package_name="kubestep")
def main():
    """kubestep - Fail-fast, retrying cluster provisioning."""
    pass


main.add_command(plan)
main.add_command(provision)
main.add_command(artifact)
main.add_command(show_config, name="config")


if __name__ == "__main__":
    main()
