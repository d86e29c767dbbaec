import argparse


class DelveArguments(argparse.Namespace):
    """Encapsulates all arguments and default values for Delve."""

    def __init__(self) -> None:
        super().__init__()
        # os.pathsep-separated directories and archives searched for imports
        self.classpath = ""
        # statements added to the program's imports
        self.imports: list = []
        # PATTERN=REPLACEMENT regex rewrites applied before instrumenting
        self.replacements: list = []
        self.insert_entry_call = True
        self.insert_exit_call = True
        # re-enter through `run()` into this method instead of instrumenting
        self.trace_method = None
        # run out of process after byte-compiling into this directory
        self.disk = None
        self.timeout = None
        self.process_id = None
        self.package = None
        self.show_source = False
        # where the recorded trace is saved (cloudpickle)
        self.save_trace = None
        # organize the snapshots in this directory and exit
        self.sort_snapshots = None
        self.debug = False
