"""
Test GLM fitting, inference and diagnostics.

Reference values are closed forms (pooled proportions, ordinary least
squares) that R's glm() reproduces exactly.
"""

import dataclasses

import pytest
import numpy as np
import pandas as pd
from scipy.special import logit

from pyglmcv import (
    glm, GLMSpec, GLMControl, Binomial, Poisson,
    DataError, ConvergenceWarning
)
from conftest import LIZARD_FORMULA


class TestBinomialFit:
    """Logistic regression on proportions weighted by trials."""

    def test_intercept_only_is_pooled_logit(self, lizards):
        model = glm('gfrac ~ 1', data=lizards, family='binomial', weights='total')
        pooled = lizards['grahami'].sum() / lizards['total'].sum()
        np.testing.assert_allclose(model.coef, [logit(pooled)], rtol=1e-6)
        assert model.converged
        np.testing.assert_allclose(model.deviance, model.null_deviance, rtol=1e-8)

    def test_lizard_model(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        assert model.n_coef == 7
        assert model.rank == 7
        assert model.converged
        assert model.column_names[0] == 'Intercept'
        assert model.df_residual == 23 - 7
        assert model.df_null == 22
        assert model.deviance < model.null_deviance
        assert np.all((model.fitted_values > 0) & (model.fitted_values < 1))

    def test_fixed_dispersion(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        assert model.dispersion == 1.0

    def test_aic_from_loglik(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        np.testing.assert_allclose(model.aic, -2 * model.loglik + 2 * model.rank)

    def test_fit_does_not_mutate(self, lizards, lizard_spec):
        before = lizards.copy()
        lizard_spec.fit(lizards)
        lizard_spec.fit(lizards)
        pd.testing.assert_frame_equal(lizards, before)

    def test_spec_is_frozen(self, lizard_spec):
        with pytest.raises(dataclasses.FrozenInstanceError):
            lizard_spec.formula = 'gfrac ~ 1'

    def test_refits_are_identical(self, lizards, lizard_spec):
        first = lizard_spec.fit(lizards)
        second = lizard_spec.fit(lizards)
        assert first is not second
        np.testing.assert_array_equal(first.coef, second.coef)

    def test_separation_warning(self):
        data = pd.DataFrame({'y': [0.0] * 5 + [1.0] * 5, 'x': np.arange(1.0, 11.0)})
        with pytest.warns(UserWarning, match="numerically 0 or 1"):
            glm('y ~ x', data=data, family='binomial')

    def test_non_convergence(self, lizards):
        spec = GLMSpec(LIZARD_FORMULA, family=Binomial(), weights='total',
                       control=GLMControl(maxit=1))
        with pytest.warns(ConvergenceWarning, match="did not converge"):
            model = spec.fit(lizards)
        assert not model.converged
        assert model.iterations == 1


class TestGaussianFit:
    """Gaussian GLM equals ordinary least squares."""

    def test_matches_lstsq(self, gaussian_data):
        model = glm('y ~ x1 + x2', data=gaussian_data)
        X = np.column_stack([np.ones(40), gaussian_data[['x1', 'x2']]])
        expected, *_ = np.linalg.lstsq(X, gaussian_data['y'], rcond=None)
        np.testing.assert_allclose(model.coef, expected, rtol=1e-8)
        assert model.family.name == 'gaussian'

    def test_dispersion_and_vcov(self, gaussian_data):
        model = glm('y ~ x1 + x2', data=gaussian_data)
        X = np.column_stack([np.ones(40), gaussian_data[['x1', 'x2']]])
        rss = np.sum(model.residuals('response') ** 2)
        sigma2 = rss / 37
        np.testing.assert_allclose(model.dispersion, sigma2, rtol=1e-8)
        np.testing.assert_allclose(model.vcov.to_numpy(),
                                   sigma2 * np.linalg.inv(X.T @ X), rtol=1e-6)

    def test_t_inference(self, gaussian_data):
        from scipy import stats
        model = glm('y ~ x1 + x2', data=gaussian_data)
        t = model.coef / model.std_errors.to_numpy()
        np.testing.assert_allclose(model.statistics, t)
        np.testing.assert_allclose(model.pvalues, 2 * stats.t.sf(np.abs(t), 37))
        ci = model.conf_int()
        assert np.all(ci['lower'] < model.coefficients)
        assert np.all(ci['upper'] > model.coefficients)

    def test_deviance_pseudo_r2_is_r2(self, gaussian_data):
        model = glm('y ~ x1 + x2', data=gaussian_data)
        y = gaussian_data['y']
        r2 = 1 - np.sum((y - model.fitted_values) ** 2) / np.sum((y - y.mean()) ** 2)
        np.testing.assert_allclose(model.pseudo_r_squared('deviance'), r2)

    def test_gaussian_loglik(self, gaussian_data):
        model = glm('y ~ x1 + x2', data=gaussian_data)
        sigma2_ml = model.deviance / 40
        expected = -20 * (np.log(2 * np.pi * sigma2_ml) + 1)
        np.testing.assert_allclose(model.loglik, expected)

    def test_aliased_column(self, gaussian_data):
        data = gaussian_data.assign(x3=gaussian_data['x1'] + gaussian_data['x2'])
        model = glm('y ~ x1 + x2 + x3', data=data)
        assert model.rank == 3
        assert np.sum(np.isnan(model.coef)) == 1
        assert np.sum(np.isnan(model.std_errors)) == 1


class TestPrediction:

    def test_predict_training_rows(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        np.testing.assert_allclose(model.predict(lizards.iloc[:3]),
                                   model.fitted_values[:3], rtol=1e-10)

    def test_predict_link(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        eta = model.predict(lizards, type='link')
        np.testing.assert_allclose(eta, model.linear_predictors, rtol=1e-10)
        np.testing.assert_allclose(model.family.linkinv(eta), model.predict(lizards))

    def test_predict_without_newdata(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        np.testing.assert_array_equal(model.predict(), model.fitted_values)

    def test_predict_unknown_type(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        with pytest.raises(ValueError, match="type must be"):
            model.predict(lizards, type='terms')

    def test_predict_unseen_level(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        newdata = lizards.iloc[:1].assign(time='night')
        with pytest.raises(DataError, match="cannot build design"):
            model.predict(newdata)

    def test_poisson_offset(self):
        rng = np.random.default_rng(7)
        exposure = rng.uniform(1, 10, size=60)
        x = rng.normal(size=60)
        counts = rng.poisson(exposure * np.exp(0.5 + 0.3 * x))
        data = pd.DataFrame({'counts': counts, 'x': x, 'logexp': np.log(exposure)})

        model = glm('counts ~ x', data=data, family=Poisson(), offset='logexp')
        assert model.converged
        np.testing.assert_allclose(model.predict(data), model.fitted_values, rtol=1e-10)
        doubled = data.assign(logexp=data['logexp'] + np.log(2))
        np.testing.assert_allclose(model.predict(doubled), 2 * model.fitted_values,
                                   rtol=1e-10)
        assert model.null_deviance > model.deviance


class TestDiagnostics:

    def test_residual_types(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        response = model.residuals('response')
        np.testing.assert_allclose(response, model.y - model.fitted_values)
        assert response.index.equals(lizards.index)

        deviance = model.residuals('deviance')
        np.testing.assert_allclose(np.sum(deviance ** 2), model.deviance, rtol=1e-10)
        assert np.all(np.sign(deviance) == np.sign(response))

        pearson = model.residuals('pearson')
        np.testing.assert_allclose(np.sum(pearson ** 2), model.pearson_chi2)

    def test_unknown_residual_type(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        with pytest.raises(ValueError, match="Unknown residual type"):
            model.residuals('partial')

    def test_dispersion_ratio(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        np.testing.assert_allclose(model.dispersion_ratio,
                                   model.pearson_chi2 / model.df_residual)
        assert model.dispersion_ratio > 0

    @pytest.mark.parametrize("kind", ['mcfadden', 'deviance', 'cox_snell', 'nagelkerke'])
    def test_pseudo_r2_in_unit_interval(self, lizards, lizard_spec, kind):
        model = lizard_spec.fit(lizards)
        assert 0 < model.pseudo_r_squared(kind) < 1

    def test_nagelkerke_exceeds_cox_snell(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        assert model.pseudo_r_squared('nagelkerke') > model.pseudo_r_squared('cox_snell')

    def test_unknown_pseudo_r2(self, lizards, lizard_spec):
        model = lizard_spec.fit(lizards)
        with pytest.raises(ValueError, match="Unknown pseudo-R"):
            model.pseudo_r_squared('efron')

    def test_summary(self, lizards, lizard_spec, capsys):
        model = lizard_spec.fit(lizards)
        model.summary()
        out = capsys.readouterr().out
        assert 'GENERALIZED LINEAR MODEL RESULTS' in out
        assert 'z value' in out
        assert 'binomial' in out
        assert 'height[T.>=5ft]:light[T.sunny]' in out

    def test_summary_marks_aliased(self, gaussian_data, capsys):
        data = gaussian_data.assign(x3=2 * gaussian_data['x1'])
        glm('y ~ x1 + x2 + x3', data=data).summary()
        out = capsys.readouterr().out
        assert 't value' in out
        assert '(aliased)' in out

    def test_repr(self, lizards, lizard_spec):
        assert 'binomial' in repr(lizard_spec.fit(lizards))


class TestInputValidation:

    def test_missing_weights_field(self, lizards):
        spec = GLMSpec(LIZARD_FORMULA, family='binomial', weights='trials')
        with pytest.raises(DataError, match="weights field 'trials' is absent"):
            spec.fit(lizards)

    def test_missing_predictor(self, lizards):
        with pytest.raises(DataError, match="cannot build design"):
            glm('gfrac ~ perch', data=lizards, family='binomial', weights='total')

    def test_missing_values(self, gaussian_data):
        data = gaussian_data.copy()
        data.loc[3, 'x1'] = np.nan
        with pytest.raises(DataError):
            glm('y ~ x1 + x2', data=data)

    def test_formula_needs_response(self):
        with pytest.raises(ValueError, match="must have a response"):
            GLMSpec('x1 + x2')

    def test_not_a_dataframe(self, gaussian_data):
        with pytest.raises(DataError, match="DataFrame"):
            glm('y ~ x1', data=gaussian_data.to_dict())

    def test_binomial_support(self, lizards):
        data = lizards.assign(gfrac=lizards['grahami'])
        with pytest.raises(DataError, match="0 <= y <= 1"):
            glm('gfrac ~ height', data=data, family='binomial')

    def test_negative_weights(self, lizards):
        data = lizards.assign(total=-lizards['total'])
        with pytest.raises(DataError, match="negative weights"):
            glm('gfrac ~ height', data=data, family='binomial', weights='total')

    def test_validate_returns_observed_and_columns(self, lizards, lizard_spec):
        observed, columns = lizard_spec.validate(lizards)
        np.testing.assert_allclose(observed, lizards['gfrac'])
        assert len(columns) == 7

    def test_control_validation(self):
        with pytest.raises(ValueError, match="epsilon"):
            GLMControl(epsilon=0)
        with pytest.raises(ValueError, match="iterations"):
            GLMControl(maxit=0)
