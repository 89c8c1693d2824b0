import os

from sphere_harvey.file_manager import FileManager


def test_create_file(tmp_path):

    file_manager = FileManager(tmp_path)
    filename = "test.yaml"
    content = b"saasName: Test"
    file_manager.write_file(filename, content)

    assert os.path.exists(tmp_path / filename)
    assert file_manager.read_file(filename) == "saasName: Test"


def test_delete_file(tmp_path):

    file_manager = FileManager(tmp_path)
    filename = "test.yaml"
    file_manager.write_file(filename, b"saasName: Test")
    assert os.path.exists(tmp_path / filename)

    file_manager.delete_file(filename)
    assert not os.path.exists(tmp_path / filename)


async def test_context_yaml_round_trip(tmp_path):

    file_manager = FileManager(tmp_path / "static")
    await file_manager.upload_yaml("abc.yaml", "saasName: Zoom\n")
    assert file_manager.read_file("abc.yaml") == "saasName: Zoom\n"

    await file_manager.delete_yaml("abc.yaml")
    assert not (tmp_path / "static" / "abc.yaml").exists()
