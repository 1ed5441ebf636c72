import pathlib
import shutil

from torwrap.common import Introspector, TorwrapException


class BaseProject:
    def __init__(self, root_dir):
        self.root_dir = root_dir

    def make_project(self):
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def destroy_project(self):
        # Make sure the project is torn down properly
        if pathlib.Path(self.root_dir).exists():
            shutil.rmtree(self.root_dir, ignore_errors=True)

    def add_file(self, name, contents, *relpath):
        file_path = (self.root_dir / pathlib.Path(*relpath) / name).resolve()
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(contents)
        return file_path

    def add_tree(self, files):
        """
        Add a mapping of posix relative paths to contents.
        """
        return [self.add_file(path, contents) for path, contents in files.items()]

    def listing(self):
        return sorted(
            _.relative_to(self.root_dir).as_posix()
            for _ in self.root_dir.rglob("*")
            if _.is_file()
        )

    def __enter__(self):
        self.make_project()
        return self

    def __exit__(self, *exc):
        self.destroy_project()


class LibtorProject(BaseProject):
    """
    A libtor checkout holding the templates torwrap copies and renders.
    """

    def add_templates(self):
        self.add_file("libtor_preamble.go.in", "package libtor\n", "build")
        self.add_file("libtor_external.go.in", "package tor\n", "build")
        self.add_file("libtor_internal.go.in", "package libtor\n// internal\n", "build")
        self.add_file(
            "README.md",
            "zlib ${zlib_version} ${zlib_revision}\n"
            "libevent ${libevent_version} ${libevent_revision}\n"
            "openssl ${openssl_version} ${openssl_revision}\n"
            "tor ${tor_version} ${tor_revision}\n",
            "build",
        )

    def add_headers(self, catalog):
        for entry in catalog:
            for arch in entry.arches:
                if entry.render:
                    contents = f'#define {entry.library.upper()}_VERSION "${{version}}"\n'
                else:
                    contents = f"/* {entry.library}{arch} */\n"
                self.add_file(entry.source.format(arch=arch), contents, "config")


class FakeIntrospector(Introspector):
    """
    Answers commands with canned output instead of running them.

    Responses are matched on the longest registered command prefix. Commands
    without a response succeed silently.
    """

    def __init__(self):
        self.responses = {}
        self.calls = []

    def add(self, cmd, output="", returncode=0, effect=None):
        self.responses[tuple(cmd)] = (output, returncode, effect)
        return self

    def commands(self):
        return [cmd for cmd, _ in self.calls]

    def run(self, cmd, cwd=None, error=TorwrapException):
        cmd = tuple(cmd)
        self.calls.append((cmd, cwd))
        matches = [_ for _ in self.responses if cmd[: len(_)] == _]
        if not matches:
            return ""
        output, returncode, effect = self.responses[max(matches, key=len)]
        if effect is not None:
            effect(cmd, pathlib.Path(cwd))
        if callable(output):
            output = output(cmd, pathlib.Path(cwd))
        if returncode:
            raise error(
                "Command '{}' failed with exit code {}".format(" ".join(cmd), returncode),
                output=output,
                returncode=returncode,
            )
        return output


def clone_from(upstreams):
    """
    A ``git clone`` effect materializing canned upstream trees.

    :param upstreams: Library name to a mapping of relative paths to contents
    """

    def effect(cmd, cwd):
        name = cmd[-1]
        with_files = BaseProject(cwd / name)
        with_files.make_project()
        with_files.add_tree(upstreams.get(name, {}))

    return effect


REVISIONS = {
    "zlib": "cacf7f1d4e3d44d871b605da3b647f07d718623f",
    "libevent": "5df3037d10556bfcb675bc73e516978b75fc7bc7",
    "openssl": "8a0b6c97d7c9b7d0c8e4f58d2a4bb1d4f5a1a8e0",
    "tor": "c6d8d69a1f8c5ae2a5a4d53e1d5c1b4e4b8b8b1e",
}

BRANCHES = """\
* (HEAD detached at OpenSSL_1_1_1-stable)
  master
  remotes/origin/HEAD -> origin/master
  remotes/origin/OpenSSL_1_0_2-stable
  remotes/origin/OpenSSL_1_1_1-stable
  remotes/origin/OpenSSL_1_1_0-stable
  remotes/origin/OpenSSL_0_9_8-stable
"""

UPSTREAMS = {
    "zlib": {
        "zlib.h": '#define ZLIB_VERSION "1.2.13"\n',
        "adler32.c": "int adler32;\n",
        "crc32.c": "int crc32;\n",
        "zconf.h": "\n",
        "LICENSE": "zlib license\n",
        "Makefile.in": "all:\n",
        "test/example.c": "int main;\n",
        "contrib/minizip/zip.c": "int zip;\n",
    },
    "libevent": {
        "configure.ac": (
            "AC_INIT(libevent,2.2.1-alpha-dev)\n"
            "AC_DEFINE(NUMERIC_VERSION, 0x02020101, [Numeric representation])\n"
        ),
        "buffer.c": "int buffer;\n",
        "event.c": "int event;\n",
        "include/event2/event.h": "\n",
        "compat/sys/queue.h": "\n",
        "sample/hello-world.c": "int main;\n",
        "test/regress.c": "int main;\n",
        "LICENSE": "libevent license\n",
        "README.md": "libevent\n",
    },
    "openssl": {
        "crypto/aes/aes_core.c": "int aes;\n",
        "ssl/ssl_lib.c": "int ssl;\n",
        "include/openssl/ssl.h": "\n",
        "apps/openssl.c": "int main;\n",
        "test/sslapitest.c": "int main;\n",
        "LICENSE": "openssl license\n",
        "Configure": "#!/usr/bin/env perl\n",
    },
    "tor": {
        "src/win32/orconfig.h": '#define VERSION "0.4.7.13-dev"\n',
        "src/lib/string/compat_string.c": '#include "strlcpy.c"\n',
        "src/ext/strlcpy.c": "int strlcpy;\n",
        "src/ext/curve25519_donna/curve25519-donna-c64.c": "int c64;\n",
        "src/ext/curve25519_donna/curve25519-donna.c": "int c32;\n",
        "src/app/main/tor_main.c": "int main;\n",
        "src/core/or/relay.c": "int relay;\n",
        "src/lib/log/.deps/log.Po": "\n",
        "src/test/test.c": "int main;\n",
        "src/tools/tor-resolve.c": "int main;\n",
        "doc/tor.1.txt": "\n",
        "LICENSE": "tor license\n",
        "README": "tor\n",
    },
}

LIBEVENT_DRY_RUN = """\
/bin/bash ./libtool --mode=compile gcc -c -o buffer.lo; mv -f .deps/buffer.Tpo
/bin/bash ./libtool --mode=compile gcc -c -o event.lo; mv -f .deps/event.Tpo
/bin/bash ./libtool --mode=compile gcc -c -o buffer.lo; mv -f .deps/buffer.Tpo
"""

OPENSSL_DRY_RUN = """\
gcc -I. -Iinclude -c -o crypto/aes/libcrypto-lib-aes_core.o crypto/aes/aes_core.c
gcc -I. -Iinclude -c -o ssl/libssl-lib-ssl_lib.o ssl/ssl_lib.c
gcc -I. -Iinclude -c -o apps/openssl-bin-openssl.o apps/openssl.c
gcc -I. -Iinclude -c -o test/sslapitest-bin-sslapitest.o test/sslapitest.c
"""

TOR_DRY_RUN = """\
gcc -c -o src/core/or/relay.o src/core/or/relay.c
gcc -c -o src/ext/curve25519_donna/curve25519-donna-c64.o src/ext/curve25519_donna/curve25519-donna-c64.c
gcc -c -o src/lib/string/compat_string.o src/lib/string/compat_string.c
gcc -c -o src/app/main/tor_main.o src/app/main/tor_main.c
gcc -c -o src/test/test.o src/test/test.c
gcc -c -o src/tools/tor-resolve.o src/tools/tor-resolve.c
"""