"""
Tests for Models

Tests for storyweaver/models
"""

from storyweaver.core.constants import TaskStatus, TaskType
from storyweaver.models import BackgroundTask, Character, Scene, Storyboard


class TestBackgroundTask:

    def test_record_shape(self):
        task = BackgroundTask(
            id="t1",
            type=TaskType.STORYBOARD,
            title="Produce",
            related_id="sb-1",
            created_at=5,
        )

        assert task.to_dict() == {
            "id": "t1",
            "type": "storyboard",
            "title": "Produce",
            "status": "pending",
            "progress": 0,
            "createdAt": 5,
            "relatedId": "sb-1",
        }

    def test_from_dict_restores_lifecycle_fields(self):
        task = BackgroundTask.from_dict({
            "id": "t2",
            "type": "video",
            "title": "Clip",
            "status": "failed",
            "progress": 40,
            "error": "boom",
            "createdAt": 1,
            "startedAt": 2,
            "completedAt": 3,
        })

        assert task.status is TaskStatus.FAILED
        assert task.is_terminal and not task.is_active
        assert (task.started_at, task.completed_at) == (2, 3)

    def test_evolve_returns_copy(self):
        task = BackgroundTask(id="t3", type=TaskType.IMAGE, title="Frame")
        running = task.evolve(status=TaskStatus.RUNNING)

        assert task.status is TaskStatus.PENDING
        assert running.is_active


class TestStoryboard:

    def test_dialogue_detection(self):
        assert Scene(description="a", dialogue="Hi").has_dialogue
        assert not Scene(description="a", dialogue="   ").has_dialogue
        assert not Scene(description="a").has_dialogue

    def test_defaults_from_sparse_record(self):
        storyboard = Storyboard.from_dict({"id": "sb", "scenes": [{"description": "x"}]})

        assert storyboard.aspect_ratio == "16:9"
        assert storyboard.style == "cinematic"
        assert storyboard.scenes[0].id
        assert "frameImage" not in storyboard.to_dict()["scenes"][0]


class TestCharacter:

    def test_dna_prefers_visual_traits(self):
        assert Character(id="a", name="Ada", visual_traits="tall").dna == "Ada: tall"
        assert Character(id="b", name="Bo", description="a robot").dna == "Bo: a robot"

    def test_reference_image_angle_order(self):
        character = Character.from_dict({
            "id": "c",
            "name": "C",
            "images": {"back": "back.png", "threeQuarter": "tq.png"},
        })

        assert character.images == {"back": "back.png", "three_quarter": "tq.png"}
        assert character.reference_image() == "tq.png"

    def test_reference_image_falls_back_to_any(self):
        assert Character(id="d", name="D", images={"sketch": "s.png"}).reference_image() == "s.png"
        assert Character(id="e", name="E").reference_image() is None
