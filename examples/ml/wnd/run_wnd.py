import os
import cfrec
import shutil

import numpy as np

from cfrec.toolkit import seed_everything


seed_everything(123)

num_samples = 2000
num_users = 100
num_items = 50
genders = np.random.choice(["M", "F"], num_samples)
ages = np.random.randint(18, 70, num_samples)
user_ids = np.random.randint(1, num_users + 1, num_samples)
item_ids = np.random.randint(1, num_items + 1, num_samples)
genres = (np.random.random([num_samples, 4]) < 0.3).astype(np.float32)
ratings = np.random.randint(0, 5, num_samples)

gender_ids = cfrec.categorical_from_vocab(genders, ["F", "M"])
age_buckets = cfrec.bucketize(ages, [25, 35, 45, 55, 65])
data = dict(
    gender=gender_ids,
    age_bucket=age_buckets,
    gender_age=cfrec.cross_columns([gender_ids, age_buckets], 100),
    genres=genres,
    user_id=user_ids,
    item_id=item_ids,
    age=(ages - ages.mean()) / ages.std(),
    label=ratings,
)
info = cfrec.ColumnFeatureInfo(
    wide_base_cols=["gender", "age_bucket"],
    wide_base_dims=[3, 6],
    wide_cross_cols=["gender_age"],
    wide_cross_dims=[100],
    indicator_cols=["genres"],
    indicator_dims=[4],
    embed_cols=["user_id", "item_id"],
    embed_in_dims=[num_users + 1, num_items + 1],
    embed_out_dims=[16, 8],
    continuous_cols=["age"],
)
x, y = cfrec.FeatureAssembler(info).transform_xy(data)

m = cfrec.WideAndDeep.make_with("wide_n_deep", 5, info, seed=123)
print("> model", m)
predictions = m.predict(x)
recommendations = m.recommend_for_user(user_ids, item_ids, x, 3)
for user_id in sorted(recommendations)[:3]:
    print(f"> user {user_id}", recommendations[user_id])

folder = "_wnd"
m.save_model(os.path.join(folder, "model.pt"), over_write=True)
m2 = cfrec.load_model(os.path.join(folder, "model.pt"))
assert np.allclose(predictions.numpy(), m2.predict(x).numpy())
m.save_model(
    os.path.join(folder, "config.pt"),
    os.path.join(folder, "weights.safetensors"),
    over_write=True,
)
m3 = cfrec.WideAndDeep.load_model(
    os.path.join(folder, "config.pt"),
    os.path.join(folder, "weights.safetensors"),
)
assert np.allclose(predictions.numpy(), m3.predict(x).numpy())
shutil.rmtree(folder)
