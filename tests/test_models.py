import os
from datetime import datetime, timedelta

from foldervision.core.errors import ErrorKind, ErrorRecord
from foldervision.core.models import FolderNode, ScanResult


def build_tree():
    root = FolderNode("/data/root", file_count=1)
    b = FolderNode("/data/root/beta", file_count=2)
    a = FolderNode("/data/root/Alpha", file_count=3)
    c = FolderNode("/data/root/Alpha/gamma", file_count=4)
    a.add_child(c)
    root.add_child(b)
    root.add_child(a)
    return root, a, b, c


def test_name_defaults_to_basename():
    assert FolderNode("/data/root/Alpha").name == "Alpha"
    assert FolderNode("/data/root/Alpha/").name == "Alpha"
    assert FolderNode("/x", name="custom").name == "custom"


def test_children_sorted_by_name_case_insensitive():
    root, a, b, _ = build_tree()
    assert [n.name for n in root.children] == ["Alpha", "beta"]


def test_subfolder_count_matches_children():
    root, a, b, c = build_tree()
    for node in (root, a, b, c):
        assert node.subfolder_count == len(node.children)


def test_add_child_ignores_same_node_twice():
    root = FolderNode("/r")
    child = FolderNode("/r/x")
    root.add_child(child)
    root.add_child(child)
    assert root.subfolder_count == 1


def test_totals_are_derived_from_tree():
    root, a, _, c = build_tree()
    assert root.total_subfolder_count == 3
    assert root.total_file_count == 10
    assert a.total_file_count == 7

    # Totals follow later mutations
    c.add_child(FolderNode("/data/root/Alpha/gamma/delta", file_count=5))
    assert root.total_subfolder_count == 4
    assert root.total_file_count == 15


def test_iter_descendants_is_depth_first_in_name_order():
    root, _, _, _ = build_tree()
    assert [n.name for n in root.iter_descendants()] == ["Alpha", "gamma", "beta"]


def test_iter_descendants_handles_deep_chains():
    root = FolderNode("/deep")
    node = root
    for i in range(5000):
        child = FolderNode(f"{node.path}/d{i}")
        node.add_child(child)
        node = child
    assert root.total_subfolder_count == 5000


def test_find_is_case_insensitive():
    root, _, _, c = build_tree()
    assert root.find("/DATA/ROOT/alpha/GAMMA") is c
    assert root.find("/data/root/missing") is None


def test_mark_truncated_keeps_first_reason():
    node = FolderNode("/x")
    node.mark_truncated("depth limit")
    node.mark_truncated("timeout")
    assert node.truncated
    assert node.truncation_reason == "depth limit"


def test_scan_result_totals_and_lookup():
    result = ScanResult()
    root1, _, _, c = build_tree()
    root2 = FolderNode("/other", file_count=7)
    result.add_root_folder(root1)
    result.add_root_folder(root2)
    result.add_root_folder(None)

    assert result.total_folders == 4 + 1
    assert result.total_files == 10 + 7
    assert result.find_folder("/data/root/alpha/gamma") is c
    assert result.find_folder("") is None
    assert [f.name for f in result.iter_folders()] == ["root", "Alpha", "gamma", "beta", "other"]


def test_scan_result_keeps_root_order_and_dedups_paths():
    result = ScanResult()
    first, second = FolderNode("/z"), FolderNode("/a")
    result.add_root_folder(first)
    result.add_root_folder(second)
    result.add_root_folder(first)
    for p in ("/z", "/a", "/z"):
        result.add_scanned_path(p)

    assert result.root_folders == [first, second]
    assert result.scanned_paths == ["/z", "/a"]


def test_scan_result_finish_and_serialization():
    start = datetime(2024, 1, 1, 12, 0, 0)
    result = ScanResult(start_time=start)
    root, _, _, _ = build_tree()
    root.last_modified = start
    result.add_root_folder(root)
    result.add_error(ErrorRecord(path="/x", message="Access denied", kind=ErrorKind.ACCESS))
    result.finish(start + timedelta(seconds=2.5))

    data = result.to_dict()
    assert data["duration_s"] == 2.5
    assert data["total_folders"] == 4
    assert data["root_folders"][0]["children"][0]["name"] == "Alpha"
    assert data["root_folders"][0]["last_modified"] == start.isoformat()
    assert data["errors"][0]["kind"] == "access"
    assert "4 folders, 10 files" in str(result)


def test_node_str():
    root, _, _, _ = build_tree()
    assert str(root) == f"{os.path.basename('/data/root')} (2 folders, 1 files)"
