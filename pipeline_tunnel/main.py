"""
CLI entrypoint & parser configuration.

Builds on top of Invoke's core functionality for same.
"""

import logging

from invoke import Argument, Collection, Program
from invoke import __version__ as invoke
from paramiko import __version__ as paramiko

from . import __version__ as pipeline_tunnel
from . import Config, tasks


class TunnelProgram(Program):
    def print_version(self):
        super().print_version()
        print("Paramiko {}".format(paramiko))
        print("Invoke {}".format(invoke))

    def core_args(self):
        core_args = super().core_args()
        my_args = [
            Argument(
                names=("S", "ssh-config"),
                help="Path to runtime SSH config file.",
            ),
            Argument(
                names=("t", "connect-timeout"),
                kind=int,
                help="Specifies default connection timeout, in seconds.",
            ),
        ]
        return core_args + my_args

    def create_config(self):
        self.config = self.config_class(lazy=True)
        self.config.load_base_conf_files()
        self.config.merge()

    def update_config(self):
        super().update_config(merge=False)
        self.config.set_runtime_ssh_path(self.args["ssh-config"].value)
        self.config.load_ssh_config()
        timeout = self.args["connect-timeout"].value
        if timeout:
            self.config._overrides["timeouts"] = dict(connect=timeout)
        self.config.merge()
        if self.args.debug.value:
            logging.basicConfig(level=logging.DEBUG)


def make_program():
    return TunnelProgram(
        name="pipeline-tunnel",
        version=pipeline_tunnel,
        namespace=Collection.from_module(tasks),
        config_class=Config,
    )


program = make_program()
