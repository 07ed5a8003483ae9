[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "rpclab"
version = "0.1.0"
description = "ONC RPC over UDP and TCP: XDR encoding, port mapper client, an add/subtract service and a small file transfer service"
requires-python = ">=3.10"
dependencies = []
keywords = ["rpc", "onc-rpc", "sunrpc", "xdr", "portmapper", "rpcbind", "file transfer"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
rpclab-calc = "rpclab.calc:main"
rpclab-simp-client = "rpclab.simp_cli:client_main"
rpclab-simp-probe = "rpclab.simp_cli:probe_main"
rpclab-simp-server = "rpclab.simp_cli:server_main"
rpclab-ftp-client = "rpclab.ftp_cli:client_main"
rpclab-ftp-server = "rpclab.ftp_cli:server_main"

[tool.hatch.build.targets.wheel]
packages = ["rpclab"]

[tool.hatch.build.targets.sdist]
include = ["rpclab", "tests"]

[tool.pytest.ini_options]
addopts = "-ra"
