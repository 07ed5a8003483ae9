# rpclab

A small ONC RPC toolkit in pure Python, using only the standard library.

- `rpclab.xdr`: XDR encoding and decoding. `Packer` and `Unpacker` handle
  signed and unsigned 32-bit integers, unsigned 64-bit hypers, fixed and
  length-prefixed opaque data and UTF-8 strings, with optional length
  limits. Out-of-range values, short buffers and oversized data raise
  `XdrError`; `Unpacker.done()` raises if bytes are left over.
- `rpclab.rpc`: RPC version 2 call and reply messages (`encode_call`,
  `decode_reply`) with null authentication, a client (`RpcClient`, UDP
  with resends or TCP with record marking) and a server (`RpcServer`)
  that answers the same program over UDP and TCP in background threads.
  Failed calls raise `RpcError` or one of its subclasses: `RpcTimeout`,
  `ProcedureUnavailable`, `GarbageArguments` and `SystemError_`.
- `rpclab.portmap`: a client for the system port mapper (program 100000,
  version 2): `get_port`, `set_mapping`, `unset_mapping`, and `connect`,
  which looks up a program's port and returns an `RpcClient`.
- `rpclab.simp`: the "simp" program (number 555555555, version 1) with
  procedures `ADD` (1) and `SUB` (2), each taking `Operands(x, y)` and
  returning a 32-bit integer. `SimpClient` calls them; `SimpService`
  implements them and builds an `RpcServer` with `build_server()`.
- `rpclab.ftp`: a file transfer program (number 0x20000001, version 1)
  with `read_file` (1) and `write_file` (2). Data moves in pieces of at
  most 512 bytes; file names are limited to 512 bytes. `FtpClient` calls
  the procedures; `FtpService` implements them on local files.
- `rpclab.calc`: the same addition and subtraction done locally, wrapping
  like a C `int`, plus `parse_int`, which reads a leading integer from a
  string and gives 0 when there is none.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Commands

By default the servers register themselves with the port mapper on the
local host, and the clients look the service up through the port mapper
on the server host. A port mapper (`rpcbind`) must then be running, and
registering usually needs administrator rights. Every server accepts
`--host`, `--udp-port`, `--tcp-port` and `--no-portmap`; every client
accepts `--tcp`, `--port` (connect straight to that port, skipping the
port mapper) and `--timeout` (seconds, default 25).

### Local arithmetic

```
rpclab-calc 7 3
```

prints

```
7 + 3 = 10
7 - 3 = 4
```

With any other number of arguments it prints a usage message on
standard error.

### The add/subtract service

Start the server:

```
rpclab-simp-server
```

It prints each request it receives, for example
`Got request: adding 7, 3`. `--delay SECONDS` makes it pause before
every result, and `--exit-on-add` makes the first `ADD` call stop the
whole service without replying.

From another shell, or another machine:

```
rpclab-simp-client localhost 7 3
```

prints the sum and the difference computed by the server, in the same
form as `rpclab-calc`. If a call fails, the client prints
`Trouble calling remote procedure` on standard error.

```
rpclab-simp-probe localhost
```

sends one `ADD` and one `SUB` call with zero operands and reports only
the calls that fail, on standard error.

Without a port mapper:

```
rpclab-simp-server --no-portmap --udp-port 5000 --tcp-port 5001
rpclab-simp-client --port 5000 localhost 7 3
rpclab-simp-client --tcp --port 5001 localhost 7 3
```

### File transfer

Start the server in the directory that holds the files to serve:

```
rpclab-ftp-server
```

Fetch a file:

```
rpclab-ftp-client localhost read remote.txt 0 0
```

The last two arguments are the starting position and the number of bytes
to ask for first; a count of 0 fetches the whole file in 512-byte pieces.
With a non-zero count, if the first piece comes back shorter than the
count, the client keeps reading until the server returns an empty piece.
The data is saved into a local file named `dest_name`, or the file given
with `--output`. The client prints the size of each piece and, at the
end, the final read offset as `N bytes written.`

Send a file:

```
rpclab-ftp-client localhost write local.txt remote-copy.txt
```

The file is sent in 512-byte pieces and the server appends what it
receives to the named file, so sending twice doubles the remote file.

## Using the library

```python
from rpclab.calc import add, subtract

add(7, 3)       # 10
subtract(7, 3)  # 4
```

```python
from rpclab.rpc import Protocol
from rpclab.simp import SimpClient

with SimpClient.connect("localhost", Protocol.TCP) as client:
    client.add(7, 3)   # 10
    client.sub(7, 3)   # 4
```

`rpclab.ftp_cli.download` and `rpclab.ftp_cli.upload` hold the transfer
loops used by `rpclab-ftp-client` and work with any `FtpClient`.

## What it does not do

- It does not include a port mapper; it only talks to one. Without a
  running port mapper, start the servers with `--no-portmap` and give
  the clients `--port`.
- Only null authentication is sent and accepted.
- The file server reads and writes any path it is given, relative to its
  working directory, with no access control; `write_file` always appends
  and ignores the position it is sent.