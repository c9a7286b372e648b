import os
import platform
import shutil


def digit_count(value):
    # type: (int) -> int
    """Number of decimal digits needed to print value (at least 1)."""
    return len(str(abs(int(value))))


class IndexFormatter:
    """Render dimension indices as fixed-width, zero-padded strings.

    The width is fixed by the largest value the dimension can display, so
    all labels of one dimension line up and sort lexically.

    Args:
        max_value: Largest index (or count) the dimension will display
        origin: Offset added before display, 1 for human-facing labels
    """

    def __init__(self, max_value: int, origin: int = 0):
        self.max_value = max_value
        self.origin = origin
        self.width = digit_count(max_value + origin)

    def format(self, index: int) -> str:
        return f"{index + self.origin:0{self.width}d}"

    def __repr__(self):
        return f"IndexFormatter(max_value={self.max_value}, origin={self.origin})"


def find_java_home():
    """Locate a Java installation for the bioformats reader plugin."""
    java_home = os.environ.get("JAVA_HOME")
    if java_home and os.path.exists(java_home):
        return java_home

    java_binary = "java.exe" if platform.system() == "Windows" else "java"
    java_exe = shutil.which("java")
    if java_exe:
        # .../jdk-XX/bin/java -> .../jdk-XX
        candidate = os.path.dirname(os.path.dirname(os.path.realpath(java_exe)))
        if os.path.exists(os.path.join(candidate, "bin", java_binary)):
            return candidate

    if platform.system() == "Windows":
        for base_path in (r"C:\Program Files\Java", r"C:\Program Files (x86)\Java"):
            if not os.path.isdir(base_path):
                continue
            for folder in sorted(os.listdir(base_path)):
                candidate = os.path.join(base_path, folder)
                if os.path.exists(os.path.join(candidate, "bin", java_binary)):
                    return candidate

    return None
