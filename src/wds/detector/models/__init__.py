from wds.detector.models.model_spec import COCO_LABELS, ModelSpec

__all__ = ["COCO_LABELS", "ModelSpec"]
